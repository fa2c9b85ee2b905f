"""
Accessors for the services created by create_app().
"""

from flask import current_app


def get_last_updates():
    return current_app.extensions['last_updates']


def get_exchange_rates():
    return current_app.extensions['exchange_rates']


def get_performance_history():
    return current_app.extensions['performance_history']


def get_two_factor():
    return current_app.extensions['two_factor']


def get_scheduler():
    return current_app.extensions['scheduler']

"""
Database models for the Investment Tracker.
Includes User, BackupCode, Account, BalanceHistory, CurrencyPair,
PerformanceHistory and ExchangeRate models.
"""

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    """User account model."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.Text, unique=True, nullable=False)
    password_hash = db.Column(db.Text, nullable=False)
    name = db.Column(db.Text, nullable=False)
    base_currency = db.Column(db.Text, default='HKD')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Two-factor fields
    two_factor_secret = db.Column(db.Text, nullable=True)
    two_factor_enabled = db.Column(db.Boolean, default=False, nullable=False)
    two_factor_last_counter = db.Column(db.Integer, nullable=True)

    # Relationships
    accounts = db.relationship('Account', backref='user', lazy=True, cascade='all, delete-orphan')
    currency_pairs = db.relationship('CurrencyPair', backref='user', lazy=True, cascade='all, delete-orphan')
    backup_codes = db.relationship('BackupCode', backref='user', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        """Convert user to dictionary (excluding password and 2FA secret)."""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'baseCurrency': self.base_currency,
            'twoFactorEnabled': bool(self.two_factor_enabled),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }

    def to_principal(self):
        """Minimal projection attached to authenticated requests."""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'baseCurrency': self.base_currency
        }


class BackupCode(db.Model):
    """Single-use 2FA recovery code (stored as a bcrypt hash)."""
    __tablename__ = 'two_factor_backup_codes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    code_hash = db.Column(db.Text, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Account(db.Model):
    """Investment or bank account model."""
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.Text, nullable=False)
    currency = db.Column(db.Text, nullable=False)
    account_type = db.Column(db.Text, default='INVESTMENT')
    account_number = db.Column(db.Text)
    original_capital = db.Column(db.Float, nullable=False)
    current_balance = db.Column(db.Float, nullable=False)
    last_updated = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    history = db.relationship(
        'BalanceHistory', backref='account', lazy=True, cascade='all, delete-orphan',
        order_by='BalanceHistory.date.desc()'
    )

    @property
    def profit_loss(self):
        if self.account_type == 'BANK':
            return 0
        return self.current_balance - self.original_capital

    @property
    def profit_loss_percent(self):
        if self.account_type == 'BANK' or not self.original_capital or self.original_capital <= 0:
            return 0
        return (self.current_balance - self.original_capital) / self.original_capital * 100

    def to_dict(self, include_history=False):
        """Convert account to dictionary."""
        data = {
            'id': self.id,
            'userId': self.user_id,
            'name': self.name,
            'currency': self.currency,
            'accountType': self.account_type,
            'accountNumber': self.account_number,
            'originalCapital': self.original_capital,
            'currentBalance': self.current_balance,
            'lastUpdated': _iso(self.last_updated),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'profitLoss': self.profit_loss,
            'profitLossPercent': self.profit_loss_percent
        }
        if include_history:
            data['history'] = [entry.to_dict() for entry in self.history]
        return data


class BalanceHistory(db.Model):
    """Account balance history model (one entry per account per day)."""
    __tablename__ = 'account_balance_history'
    __table_args__ = (db.UniqueConstraint('account_id', 'date'),)

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    balance = db.Column(db.Float, nullable=False)
    note = db.Column(db.Text)
    date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'accountId': self.account_id,
            'balance': self.balance,
            'note': self.note,
            'date': _iso(self.date),
            'createdAt': _iso(self.created_at)
        }


class CurrencyPair(db.Model):
    """Currency position model, e.g. USD/HKD."""
    __tablename__ = 'currency_pairs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    pair = db.Column(db.Text, nullable=False)
    current_rate = db.Column(db.Float, nullable=False)
    avg_cost = db.Column(db.Float, nullable=False)
    amount = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def currencies(self):
        base, _, quote = self.pair.partition('/')
        return base, quote

    def to_dict(self):
        profit_loss = (self.current_rate - self.avg_cost) * self.amount
        profit_loss_percent = ((self.current_rate - self.avg_cost) / self.avg_cost * 100) if self.avg_cost else 0
        return {
            'id': self.id,
            'userId': self.user_id,
            'pair': self.pair,
            'currentRate': self.current_rate,
            'avgCost': self.avg_cost,
            'amount': self.amount,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'profitLoss': profit_loss,
            'profitLossPercent': profit_loss_percent
        }


class PerformanceHistory(db.Model):
    """Daily profit and loss snapshot."""
    __tablename__ = 'performance_history'
    __table_args__ = (db.UniqueConstraint('user_id', 'date'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    total_pl = db.Column(db.Float, nullable=False)
    investment_pl = db.Column(db.Float, nullable=False)
    currency_pl = db.Column(db.Float, nullable=False)
    daily_pl = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'date': _iso(self.date),
            'totalPL': self.total_pl,
            'investmentPL': self.investment_pl,
            'currencyPL': self.currency_pl,
            'dailyPL': self.daily_pl,
            'createdAt': _iso(self.created_at)
        }


class ExchangeRate(db.Model):
    """Cached exchange rate for a currency pair."""
    __tablename__ = 'exchange_rates'

    id = db.Column(db.Integer, primary_key=True)
    pair = db.Column(db.Text, unique=True, nullable=False, index=True)
    rate = db.Column(db.Float, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

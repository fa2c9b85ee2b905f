"""
TOTP two-factor authentication service.

A user moves from disabled to pending (secret stored, not confirmed) on setup,
to enabled once a code from the authenticator app verifies, and back to
disabled on disable. Secrets are encrypted at rest when
TWO_FACTOR_ENCRYPTION_KEY is configured.
"""

import base64
import io
import logging
import secrets
import string
import time
from datetime import datetime

import bcrypt
import pyotp
import qrcode
from cryptography.fernet import Fernet
from pyotp.utils import strings_equal

from models import db, User, BackupCode

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
# Accept codes from two 30s steps either side of now.
TOTP_VALID_WINDOW = 2
BACKUP_CODE_COUNT = 10
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits


class TwoFactorError(Exception):
    """Raised when a 2FA operation is not allowed in the user's current state."""


def is_valid_code_format(token):
    return isinstance(token, str) and len(token) == TOTP_DIGITS and token.isdigit()


class TwoFactorService:
    """Setup, verification and removal of TOTP 2FA for users."""

    def __init__(self, issuer='Investment Tracker', encryption_key=None, bcrypt_rounds=12, clock=time.time):
        self.issuer = issuer
        self.bcrypt_rounds = bcrypt_rounds
        self.clock = clock
        self.fernet = Fernet(encryption_key.encode()) if encryption_key else None

    def encrypt_secret(self, secret):
        """Encrypt a TOTP secret for storage."""
        if self.fernet:
            return self.fernet.encrypt(secret.encode()).decode()
        return secret

    def decrypt_secret(self, stored_secret):
        """Decrypt a stored TOTP secret."""
        if self.fernet:
            return self.fernet.decrypt(stored_secret.encode()).decode()
        return stored_secret

    def _load_user(self, user_id):
        return db.session.get(User, user_id)

    def generate_secret(self, user_id, user_email):
        """Store a new unconfirmed secret and return the enrolment details."""
        user = self._load_user(user_id)
        if user is None:
            raise TwoFactorError('User not found')
        if user.two_factor_enabled:
            raise TwoFactorError('2FA is already enabled')

        secret = pyotp.random_base32(length=32)
        user.two_factor_secret = self.encrypt_secret(secret)
        user.two_factor_last_counter = None
        db.session.commit()

        otpauth_url = pyotp.TOTP(secret).provisioning_uri(
            name=user_email,
            issuer_name=self.issuer
        )

        return {
            'secret': secret,
            'qrCodeUrl': self._qr_data_url(otpauth_url),
            'manualEntryKey': secret
        }

    def _qr_data_url(self, uri):
        img = qrcode.make(uri)
        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode('ascii')

    def _match_counter(self, secret, token):
        """Return the time step the code belongs to, or None if it matches none."""
        totp = pyotp.TOTP(secret)
        now = self.clock()
        current = totp.timecode(datetime.fromtimestamp(now))
        for offset in range(-TOTP_VALID_WINDOW, TOTP_VALID_WINDOW + 1):
            if strings_equal(token, totp.at(now, counter_offset=offset)):
                return current + offset
        return None

    def _check_totp(self, user, token):
        """Verify token against the user's secret and burn its time step."""
        if not user.two_factor_secret or not is_valid_code_format(token):
            return False

        counter = self._match_counter(self.decrypt_secret(user.two_factor_secret), token)
        if counter is None:
            return False
        if user.two_factor_last_counter is not None and counter <= user.two_factor_last_counter:
            logger.warning('Rejected reused 2FA code for user %s', user.id)
            return False

        user.two_factor_last_counter = counter
        return True

    def verify_and_enable(self, user_id, token):
        """Enable 2FA if token is valid. Returns backup codes, or None if invalid."""
        user = self._load_user(user_id)
        if user is None or not self._check_totp(user, token):
            db.session.rollback()
            return None

        user.two_factor_enabled = True
        codes = self._replace_backup_codes(user)
        db.session.commit()
        logger.info('2FA enabled for user %s', user.id)
        return codes

    def verify_token(self, user_id, token):
        """Verify a TOTP code (or unused backup code) during login."""
        user = self._load_user(user_id)
        if user is None or not user.two_factor_enabled or not user.two_factor_secret:
            logger.info('2FA verification failed: user %s not found or 2FA not enabled', user_id)
            return False

        if self._check_totp(user, token) or self._use_backup_code(user, token):
            db.session.commit()
            return True

        db.session.rollback()
        return False

    def disable(self, user_id):
        user = self._load_user(user_id)
        if user is None:
            return
        user.two_factor_enabled = False
        user.two_factor_secret = None
        user.two_factor_last_counter = None
        BackupCode.query.filter_by(user_id=user.id).delete()
        db.session.commit()
        logger.info('2FA disabled for user %s', user.id)

    def is_enabled(self, user_id):
        user = self._load_user(user_id)
        return bool(user and user.two_factor_enabled)

    def _hash_code(self, code):
        return bcrypt.hashpw(code.encode('utf-8'), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode('utf-8')

    def _replace_backup_codes(self, user):
        BackupCode.query.filter_by(user_id=user.id).delete()
        codes = [
            ''.join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
            for _ in range(BACKUP_CODE_COUNT)
        ]
        for code in codes:
            db.session.add(BackupCode(user_id=user.id, code_hash=self._hash_code(code)))
        return codes

    def _use_backup_code(self, user, token):
        if not isinstance(token, str) or len(token) != BACKUP_CODE_LENGTH:
            return False

        candidate = token.strip().upper().encode('utf-8')
        unused = BackupCode.query.filter_by(user_id=user.id, used_at=None).all()
        for backup_code in unused:
            if bcrypt.checkpw(candidate, backup_code.code_hash.encode('utf-8')):
                backup_code.used_at = datetime.utcnow()
                logger.info('Backup code used for user %s', user.id)
                return True
        return False

# otpgate Models
from otpgate.models.account import Account
from otpgate.models.base import BaseModel, UTCDateTime
from otpgate.models.otp_record import OTPRecord
from otpgate.models.token_blacklist import TokenBlacklist
from otpgate.models.token_record import TokenRecord

__all__ = [
    "Account",
    "BaseModel",
    "OTPRecord",
    "TokenBlacklist",
    "TokenRecord",
    "UTCDateTime",
]

"""otpgate - one-time passcodes, session tokens and revocation."""

__version__ = "0.1.0"

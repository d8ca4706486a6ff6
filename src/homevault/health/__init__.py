# HomeVault - Password Health Module
#
# Strength estimation and the weak/reused/stale report.

from .analyzer import (
    STALE_THRESHOLD_DAYS,
    PasswordHealthAnalyzer,
    PasswordHealthReport,
    analyze_password_health,
)
from .strength import (
    StrengthResult,
    estimate_password_strength,
    generate_strong_password,
    is_password_strong,
)

__all__ = [
    "STALE_THRESHOLD_DAYS",
    "PasswordHealthAnalyzer",
    "PasswordHealthReport",
    "analyze_password_health",
    "StrengthResult",
    "estimate_password_strength",
    "generate_strong_password",
    "is_password_strong",
]

"""Central configuration for CDR retrieval, analytics ranges and phone matching.
Tunables live here to avoid hardcoding them inside the services.
"""
from __future__ import annotations

from pbx_insights.domain.models import RangeConfig

# ---------------------------
# Upstream vocabulary
# ---------------------------
ANSWERED = "ANSWERED"
TOKEN_EXPIRED_ERRCODE = 10004

# ---------------------------
# Date encodings tried by the format probe, in priority order.
# "iso" is rendered with datetime.isoformat and the local UTC offset.
# ---------------------------
DATE_FORMATS = [
    ("ymd-24h", "%Y/%m/%d %H:%M:%S"),
    ("ymd-dash-24h", "%Y-%m-%d %H:%M:%S"),
    ("mdy-24h", "%m/%d/%Y %H:%M:%S"),
    ("dmy-24h", "%d/%m/%Y %H:%M:%S"),
    ("ymd-12h", "%Y/%m/%d %I:%M:%S %p"),
    ("mdy-12h", "%m/%d/%Y %I:%M:%S %p"),
    ("dmy-12h", "%d/%m/%Y %I:%M:%S %p"),
    ("iso-offset", "iso"),
]

# ---------------------------
# Phone matching
# ---------------------------
# (international prefix, domestic trunk digit)
DEFAULT_TRUNK_RULES = [("+27", "0")]
MIN_SUFFIX_LENGTH = 9
SUFFIX_LENGTHS = (10, 9)

# ---------------------------
# CDR pagination budgets
# ---------------------------
PAGE_SIZE = 300
MAX_PAGES = 8
REPORT_MAX_PAGES = 100
FALLBACK_MAX_PAGES = 50
CONTACT_HISTORY_DAYS = 90
REQUEST_TIMEOUT = 30

# ---------------------------
# Analytics range presets
# ---------------------------
RANGE_PRESETS = {
    "today": RangeConfig(
        key="today", label="Today", compare_label="Yesterday", bucket="hour", bucket_count=24, span_days=1,
    ),
    "week": RangeConfig(
        key="week", label="Last 7 Days", compare_label="Previous 7 Days", bucket="day", bucket_count=7, span_days=7,
    ),
    "month": RangeConfig(
        key="month", label="Last 30 Days", compare_label="Previous 30 Days", bucket="day", bucket_count=30, span_days=30,
    ),
}

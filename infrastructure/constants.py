"""
Constants Module - Centralized configuration values
===================================================

Single source of truth for the booking venue, the booking-window rules and
the external service endpoints. Values here are defaults; deployments
override most of them through :mod:`infrastructure.settings`.
"""

# Venue
VENUE_TIMEZONE = "America/New_York"
VENUE_BASE_URL = "https://my.tfc.com"
AMENITIES_URL = f"{VENUE_BASE_URL}/amenities"

# Booking window rules
BOOKING_WINDOW_DAYS = 7  # Reservations open 7 calendar days ahead, same wall-clock time
PRECISE_ARM_HORIZON_MINUTES = 30  # Closer than this: wait in-process instead of arming cron-job.org
WEBHOOK_TOLERANCE_MINUTES = 10
MIN_RUN_DELAY_SECONDS = 5  # Past run times are clamped to now + this

# Retry policy
DEFAULT_MAX_RETRIES = 10
RETRY_DELAY_SECONDS = 60

# Schedule state
MAX_LOG_ENTRIES = 100
ATTEMPT_LEASE_SECONDS = 300  # A crashed attempt's claim can be reclaimed after this
ATTEMPT_TIMEOUT_SECONDS = 240  # Must stay below ATTEMPT_LEASE_SECONDS
DEFAULT_POLL_INTERVAL_SECONDS = 15
FIRED_TRIGGER_RETENTION_HOURS = 24  # Fired trigger records are pruned after this

# Date/time formats used at the input boundary
TARGET_DATE_FORMAT = "%Y-%m-%d"
TARGET_TIME_FORMAT = "%H:%M"

# Browser timeouts
NAVIGATION_TIMEOUT_MS = 30000
ACTION_TIMEOUT_MS = 10000
CONFIRM_TIMEOUT_MS = 15000
SLOT_DURATION_MINUTES = 60
GUEST_COUNT = "1"

# Venue page selectors
USERNAME_SELECTORS = [
    'input[name="username"]',
    'input[name="email"]',
    'input[type="email"]',
    'input[id="username"]',
    'input[id="email"]',
]
PASSWORD_SELECTORS = [
    'input[name="password"]',
    'input[type="password"]',
    'input[id="password"]',
]
LOGIN_SUBMIT_SELECTOR = 'button[type="submit"], input[type="submit"], button:has-text("Log in"), button:has-text("Sign in")'
TENNIS_TILE_SELECTOR = 'button.amenity-tile:has-text("Tennis Court")'
ACCEPT_RULES_SELECTOR = 'button.btn-primary:has-text("I accept")'
DATE_SECTION_TEMPLATE = '.date-section:has(.header-date[id="{date}"])'
TIME_ROW_SELECTOR = 'tr.start-time-schedule-row'
TIME_LABEL_SELECTOR = '.time-column'
OPEN_SLOT_SELECTOR = 'td.start-time-block.open button'
DURATION_BUTTON_SELECTOR = 'button.btn-simple'
GUESTS_SELECTOR = 'select#guests, select[name="guests"]'
SUBMIT_RESERVATION_SELECTOR = 'button.btn-primary:has-text("Submit reservation")'
CONFIRMATION_KEYWORDS = ("confirmed", "success")

# External services
NTFY_BASE_URL = "https://ntfy.sh"
CRONJOB_API_URL = "https://api.cron-job.org"
HTTP_TIMEOUT_SECONDS = 15.0

# Durable store keys
REDIS_KEY_PREFIX = "courtbot"
SCHEDULE_FILE_NAME = "schedule.json"
TRIGGERS_FILE_NAME = "triggers.json"
CLAIMS_DIR_NAME = "claims"

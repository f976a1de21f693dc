"""
Constants Module - Centralized configuration values
===================================================

PURPOSE: Single source of truth for site-specific constants
PATTERN: Modular constants organized by category
SCOPE: Exam finder page, booking flow selectors, browser and timing defaults

Values that operators tune per deployment live in ``infrastructure.settings``.
"""

# Exam finder / endpoint capture
EXAM_PAGE_URL = "https://www.goethe.de/ins/in/en/spr/prf/gzb2.cfm"
EXAM_API_MARKER = "examfinder"
BOOKING_URL_TEMPLATE = "https://www.goethe.de/coe?lang=en&oid={oid}"

DEFAULT_PRIORITY_LOCATIONS = ("chennai", "bengal", "bangalore")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_VIEWPORT = {"width": 1920, "height": 1080}
BROWSER_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

POLL_REQUEST_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


class CaptureConfig:
    """Endpoint capture retry budget and per-attempt deadlines (seconds)."""
    MAX_RETRIES = 20
    RETRY_DELAY = 10.0
    RECAPTURE_MAX_RETRIES = 3       # After an endpoint invalidation mid-session
    RECAPTURE_RETRY_DELAY = 5.0
    REFRESH_MAX_RETRIES = 5
    REFRESH_RETRY_DELAY = 3.0
    ATTEMPT_TIMEOUT = 20.0
    NAVIGATION_TIMEOUT_MS = 25000
    SETTLE_DELAY = 5.0


class PollingConfig:
    """Availability poller defaults (seconds)."""
    INTERVAL = 5.0
    MAX_DURATION = 30 * 60.0
    FETCH_TIMEOUT = 10.0
    STALE_SESSION_GRACE = 1.0
    FORCE_STOP_MAX_WAIT = 10.0
    FORCE_STOP_LOG_INTERVAL = 1.0


class SlotPoolConfig:
    """Resource slot pool sizing and acquire backoff (seconds)."""
    DEFAULT_SIZE = 5
    BASE_DISPLAY = 99
    ACQUIRE_MAX_RETRIES = 10
    BACKOFF_BASE = 1.0
    BACKOFF_CAP = 30.0


class OrchestratorConfig:
    """Booking batch defaults."""
    DEFAULT_CONCURRENCY = 2
    ACCOUNT_TASK_TIMEOUT = 3 * 60 * 60.0
    PAYMENT_HANDOFF_WAIT = 600.0


class SchedulerConfig:
    """Schedule watcher timing (seconds)."""
    CHECK_INTERVAL = 30.0
    LOOKAHEAD = 2 * 60.0
    SESSION_EXPIRY = 30 * 60.0


class BookingTimeouts:
    """Timeouts used while driving the booking pages (milliseconds)."""
    NAVIGATION = 60000
    SELECTOR = 15000
    MODULE_CHECKBOXES = 5000
    OPTIONAL_NAVIGATION = 5000
    CONFLICT_NAVIGATION = 15000
    FORM_SETTLE_SECONDS = 1.0
    MAX_OPEN_ATTEMPTS = 10


# Booking flow selectors
MODULE_CHECKBOX_SELECTOR = "input.cs-checkbox__input"
NEXT_BUTTON_SELECTOR = "button.cs-button--arrow_next"
BOOK_FOR_BUTTON_SELECTOR = "button.cs-layer__button--high"
LOGIN_USERNAME_SELECTOR = "#username"
LOGIN_PASSWORD_SELECTOR = "#password"
LOGIN_SUBMIT_SELECTOR = 'input[type="submit"][name="submit"]'
CONFLICT_OVERLAY_SELECTOR = ".cs-overlay__container"
CONFLICT_DISCARD_SELECTOR = "button.cs-button.cs-button--look_tertiary.cs-layer__button"

DETAILS_FORM_SELECTORS = {
    "first_name": 'input[data-field-name="name"]',
    "last_name": 'input[data-field-name="surname"]',
    "birth_day": 'select[name="accountPanel:basicData:body:dateBirth:daySelector"]',
    "birth_month": 'select[name="accountPanel:basicData:body:dateBirth:monthSelector"]',
    "birth_year": 'select[name="accountPanel:basicData:body:dateBirth:yearSelector"]',
}
# The year selector's option values count up from this year.
BIRTH_YEAR_OFFSET = 1925

ADDRESS_FORM_SELECTORS = {
    "postal_code": "input[name='accountPanel:furtherData:body:postalCode:inputContainer:input']",
    "city": "input[name='accountPanel:furtherData:body:city:inputContainer:input']",
    "street": "input[name='accountPanel:furtherData:body:street:inputContainer:input']",
    "house_no": "input[name='accountPanel:furtherData:body:houseNo:inputContainer:input']",
    "mobile": "input[name='accountPanel:furtherData:body:mobilePhone:input2Container:input2']",
    "birthplace": "input[name='accountPanel:furtherData:body:birthplace:inputContainer:input']",
    "motivation": "select#id4d",
}
MOTIVATION_DEFAULT = "BookingReasonOther"

# Consent banner state injected before any page script runs
CONSENT_STORAGE = {
    "uc_gcm": (
        '{"adsDataRedaction":true,"adPersonalization":"denied","adStorage":"denied",'
        '"adUserData":"denied","analyticsStorage":"denied"}'
    ),
    "uc_ui_version": "3.73.0",
    "uc_user_interaction": "true",
    "uc_settings": (
        '{"controllerId":"42e213448633d19d017343f77368ef4ab462b0ca1fb10607c313393260b08f21",'
        '"id":"rTbKQ4Qc-","services":[]}'
    ),
}

# Resource types dropped while booking to keep pages light
BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "media", "other"})

from zoneinfo import ZoneInfo


DEVICE_TZ = ZoneInfo("Asia/Colombo")

# MQTT topics the appliance subscribes to
SCHEDULE_UPDATE_TOPIC = "bell/schedule/update"
RING_NOW_TOPIC = "bell/ring/now"
TIME_SYNC_TOPIC = "bell/time/sync"
TIME_UPDATE_TOPIC = "bell/time/update"
BELL_QOS = 1

# Wire message types
SCHEDULE_UPDATE = "schedule_update"
FULL_SCHEDULE_UPDATE = "full_schedule_update"
MANUAL_RING = "manual_ring"
TIME_SYNC = "time_sync"

# Firestore
SCHEDULE_COLLECTION = "schedules"

# Ring duration bounds in seconds
MIN_RING_DURATION = 1
MAX_RING_DURATION = 30
DEFAULT_RING_DURATION = 5

# Delivery limits
MAX_DELIVERY_ATTEMPTS = 5
LIVE_RETRY_CAP = 3
DEFAULT_LIVE_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_PUBLISH_TIMEOUT = 5.0
DEFAULT_IDLE_TIMEOUT = 60.0
DEFAULT_GLOBAL_SCHEDULE_LIMIT = 10

EXAM_DAY = "ExamDay"
DAYS_OF_WEEK = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
VALID_DAYS = DAYS_OF_WEEK + (EXAM_DAY,)

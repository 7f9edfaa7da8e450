"""Global constants for the SMAAKS application."""

# Database-related constants
FIRESTORE_BATCH_LIMIT = 400

# Collection names
USERS_COLLECTION = "users"
GROUPS_COLLECTION = "groups"
EVENTS_COLLECTION = "events"
MEMBERS_SUBCOLLECTION = "members"
REQUESTS_COLLECTION = "membershipRequests"
POSTS_COLLECTION = "groupPosts"
REACTIONS_SUBCOLLECTION = "reactions"
COMMENTS_COLLECTION = "groupComments"
GROUP_MESSAGES_COLLECTION = "groupMessages"
EVENT_MESSAGES_COLLECTION = "event_messages"
MESSAGE_REPORTS_SUBCOLLECTION = "reports"
REPORTS_COLLECTION = "reports"
NOTIFICATIONS_COLLECTION = "notifications"

# Roles and statuses
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"
ROLE_MEMBER = "member"
MEMBER_ROLES = (ROLE_OWNER, ROLE_ADMIN, ROLE_MODERATOR, ROLE_MEMBER)
MODERATOR_ROLES = (ROLE_OWNER, ROLE_ADMIN, ROLE_MODERATOR)

MEMBER_ACTIVE = "active"
MEMBER_REMOVED = "removed"

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

MESSAGE_VISIBLE = "visible"
MESSAGE_HIDDEN = "hidden"
MESSAGE_REPORTED = "reported"
REPORT_THRESHOLD = 3
REPORT_REASONS = ("spam", "inappropriate", "offensive", "other")

EVENT_ACTIVE = "active"
EVENT_FULL = "full"
EVENT_STATUSES = (EVENT_ACTIVE, "cancelled", "completed", EVENT_FULL)
SKILL_LEVELS = ("beginner", "intermediate", "advanced", "all")

# Feed-related constants
FEED_LIMIT = 20
CHAT_PREVIEW_LENGTH = 50
REACTION_EMOJIS = {
    "like": "👍",
    "love": "❤️",
    "laugh": "😂",
    "wow": "😮",
    "sad": "😢",
    "angry": "😠",
}
REACTION_TYPES = tuple(REACTION_EMOJIS)

# Suggestion scoring
SUGGESTION_LIMIT = 3
SCORE_FAVORITE_SPORT = 30
SCORE_SKILL_LEVEL = 20
SCORE_LOCATION = 15
SCORE_RECENTLY_CREATED = 10
SCORE_SPOTS_LEFT = 5
SCORE_STARTS_SOON = 10
RECENTLY_CREATED_DAYS = 3
STARTS_SOON_DAYS = 7
MIN_SPOTS_LEFT = 2

# Default allow-listed administrator
DEFAULT_ADMIN_EMAIL = "contact@smaaks.fr"

# Email-related constants
SMTP_AUTH_ERROR_CODE = 534

# Group settings
GROUP_CATEGORIES = (
    "Sport & Fitness",
    "Technologie & Innovation",
    "Arts & Culture",
    "Cuisine & Gastronomie",
    "Voyage & Aventure",
    "Entrepreneuriat & Business",
    "Santé & Bien-être",
    "Éducation & Formation",
    "Musique & Spectacle",
    "Jeux & Divertissement",
    "Nature & Environnement",
    "Communauté & Social",
    "Autre",
)
EXTERNAL_LINK_KINDS = ("whatsapp", "discord", "telegram", "website")
PUBLIC_GROUPS_LIMIT = 20

# Sport events
SPORTS = (
    "tennis",
    "football",
    "basketball",
    "running",
    "badminton",
    "volleyball",
    "boxing",
    "cycling",
)
SKILL_LEVEL_ALL = "all"
# Profile levels are stored in French; events use the English scale.
PROFILE_LEVELS = {
    "debutant": "beginner",
    "intermediaire": "intermediate",
    "avance": "advanced",
    "expert": "advanced",
}
MIN_PARTICIPANTS = 2
EVENTS_LIST_LIMIT = 50

TMDB_BASE_URL = "https://api.themoviedb.org/3"

# Supabase tables
WATCHLIST_TABLE = "user_watchlist"
AFFINITY_TABLE = "user_genre_affinity"
IMPRESSIONS_TABLE = "content_impressions"
SVD_CACHE_TABLE = "svd_recommendations"

# Latent factor model
SVD_DEFAULT_FACTORS = 50
SVD_CACHE_TOP_N = 50
SVD_CACHE_TTL_HOURS = 24
RATING_MIN = 1.0
RATING_MAX = 5.0

# Affinity decay
AFFINITY_HALF_LIFE_DAYS = 30.0
AFFINITY_MIN_DECAY = 0.1

# Impressions / fatigue
STRONG_REJECTION_THRESHOLD = 10
MIN_PATTERN_FREQUENCY = 3
AVOID_CONFIDENCE = 0.5
LOW_RATING_CEIL = 6.0
MID_RATING_CEIL = 7.5
IMPRESSION_RETENTION_DAYS = 7
FATIGUE_THRESHOLD = 3
FATIGUE_STEP = 0.15
FATIGUE_FLOOR = 0.3
FATIGUE_COOLDOWN_DAYS = 7
FATIGUE_DEPRIORITIZE = 0.5

# Exclusions
RECENT_IMPRESSION_DAYS = 7
SKIP_LOG_DAYS = 7

# Per-user local state: reloaded from durable storage after the TTL
USER_STATE_TTL_SEC = 300
USER_STATE_MAX_USERS = 10_000

# Collaborative filtering
MIN_OVERLAP_RATIO = 0.15
MIN_OVERLAP_COUNT = 3
MIN_SIMILAR_USERS = 2
MIN_RECOMMENDATIONS_FROM = 2
MAX_SIMILAR_USERS = 50

DEFAULT_TOP_GENRES = ["Drama", "Action", "Comedy", "Adventure", "Science Fiction"]

# TMDB genre name -> [movie id, tv id]; TV folds several movie genres together
GENRE_NAME_TO_IDS: dict[str, list[int]] = {
    "Action": [28, 10759],
    "Adventure": [12, 10759],
    "Animation": [16],
    "Comedy": [35],
    "Crime": [80],
    "Documentary": [99],
    "Drama": [18],
    "Family": [10751],
    "Fantasy": [14, 10765],
    "History": [36],
    "Horror": [27],
    "Music": [10402],
    "Mystery": [9648],
    "Romance": [10749],
    "Science Fiction": [878, 10765],
    "Thriller": [53],
    "War": [10752, 10768],
    "Western": [37],
    "Kids": [10762],
    "Reality": [10764],
    "Soap": [10766],
    "Talk": [10767],
    "News": [10763],
    "Action & Adventure": [28, 10759],
    "Sci-Fi & Fantasy": [878, 10765],
    "War & Politics": [10752, 10768],
}

GENRE_ID_TO_NAME: dict[int, str] = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    53: "Thriller",
    10752: "War",
    37: "Western",
    10759: "Action & Adventure",
    10762: "Kids",
    10763: "News",
    10764: "Reality",
    10765: "Sci-Fi & Fantasy",
    10766: "Soap",
    10767: "Talk",
    10768: "War & Politics",
}

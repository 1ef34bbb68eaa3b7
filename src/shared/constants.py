"""Shared constants across the application."""

# Marketplace API paths
AUTH_PARTNER_PATH = "/api/v2/shop/auth_partner"
TOKEN_GET_PATH = "/api/v2/auth/token/get"
TOKEN_REFRESH_PATH = "/api/v2/auth/access_token/get"
ORDER_LIST_PATH = "/api/v2/order/get_order_list"
ORDER_DETAIL_PATH = "/api/v2/order/get_order_detail"

# Marketplace limits
MAX_ORDER_LIST_PAGE_SIZE = 100
MAX_ORDER_DETAIL_BATCH_SIZE = 50
MAX_LIST_WINDOW_DAYS = 15

# Error codes
DEFAULT_TRANSIENT_ERROR_CODES = (
    "error_server",
    "error_busy",
    "error_inner",
    "error_too_many_request",
)
TOKEN_REJECTED_ERROR_CODES = frozenset(
    {
        "error_auth",
        "invalid_access_token",
        "invalid_acceess_token",
    }
)

# Token lifecycle
TOKEN_REFRESH_MARGIN_SECONDS = 300

# Time windows
DEFAULT_LOOKBACK_DAYS = 7
CURSOR_OVERLAP_MINUTES = 10

# Store tables
CONNECTIONS_TABLE = "connections"
RAW_ORDERS_TABLE = "raw_orders"
NORMALIZED_ORDERS_TABLE = "normalized_orders"

# Connection status
CONNECTION_ACTIVE = "active"
CONNECTION_DISABLED = "disabled"

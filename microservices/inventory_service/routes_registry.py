"""
Inventory Service Routes Registry

Defines service metadata and the routes exposed by the inventory ledger.
"""

SERVICE_METADATA = {
    "service_name": "inventory_service",
    "version": "1.0.0",
    "tags": ['inventory', 'ledger', 'v1'],
    "capabilities": [
        'stock_ledger',
        'inventory_reservation',
        'inventory_commit',
        'inventory_release',
        'reservation_expiry',
        'stock_alerts',
    ],
}

BASE_PATH = "/api/v1/inventory"

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": f"{BASE_PATH}/health", "methods": ["GET"], "description": "Service health check (API v1)"},
    {"path": f"{BASE_PATH}/stock", "methods": ["GET", "POST"], "description": "List stock levels or register item at a location"},
    {"path": f"{BASE_PATH}/stock/{{item_id}}/{{location_id}}", "methods": ["GET"], "description": "Stock level snapshot"},
    {"path": f"{BASE_PATH}/stock/{{item_id}}/{{location_id}}/adjust", "methods": ["POST"], "description": "Restock or correct stock"},
    {"path": f"{BASE_PATH}/stock/{{item_id}}/{{location_id}}/thresholds", "methods": ["PATCH"], "description": "Update reorder point / maximum stock"},
    {"path": f"{BASE_PATH}/stock/{{item_id}}/{{location_id}}/reconcile", "methods": ["GET"], "description": "Replay movements against stock"},
    {"path": f"{BASE_PATH}/stock/adjust/batch", "methods": ["POST"], "description": "Batch stock update"},
    {"path": f"{BASE_PATH}/reservations", "methods": ["GET", "POST"], "description": "List or create reservations"},
    {"path": f"{BASE_PATH}/reservations/bulk", "methods": ["POST"], "description": "Reserve a cart"},
    {"path": f"{BASE_PATH}/reservations/sweep", "methods": ["POST"], "description": "Expire overdue reservations"},
    {"path": f"{BASE_PATH}/reservations/{{reservation_id}}", "methods": ["GET"], "description": "Get reservation"},
    {"path": f"{BASE_PATH}/reservations/{{reservation_id}}/validate", "methods": ["GET"], "description": "Validate reservation"},
    {"path": f"{BASE_PATH}/reservations/{{reservation_id}}/extend", "methods": ["POST"], "description": "Extend reservation TTL"},
    {"path": f"{BASE_PATH}/reservations/{{reservation_id}}/release", "methods": ["POST"], "description": "Release reservation"},
    {"path": f"{BASE_PATH}/reservations/{{reservation_id}}/commit", "methods": ["POST"], "description": "Commit reservation as sale"},
    {"path": f"{BASE_PATH}/movements", "methods": ["GET"], "description": "Movement audit trail"},
    {"path": f"{BASE_PATH}/alerts", "methods": ["GET"], "description": "Alerts with statistics"},
    {"path": f"{BASE_PATH}/alerts/{{alert_id}}", "methods": ["GET"], "description": "Get alert"},
    {"path": f"{BASE_PATH}/alerts/{{alert_id}}/acknowledge", "methods": ["POST"], "description": "Acknowledge alert"},
    {"path": f"{BASE_PATH}/alerts/{{alert_id}}/resolve", "methods": ["POST"], "description": "Resolve alert"},
    {"path": f"{BASE_PATH}/alerts/{{alert_id}}/snooze", "methods": ["POST"], "description": "Snooze alert"},
    {"path": f"{BASE_PATH}/alerts/{{alert_id}}/cancel", "methods": ["POST"], "description": "Cancel alert"},
]


def get_route_metadata():
    """Route metadata for service discovery"""
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join([r["path"] for r in ROUTES]),
        "api_version": "v1",
        "base_path": BASE_PATH,
    }


__all__ = ["SERVICE_METADATA", "BASE_PATH", "ROUTES", "get_route_metadata"]

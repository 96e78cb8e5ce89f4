from .routes_affinity import router as affinity_router
from .routes_recommendations import router as recommendations_router

all_routers = [
    recommendations_router,
    affinity_router,
]

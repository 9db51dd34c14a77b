from .plants import router as plants_router
from .images import router as images_router
from .objects import router as objects_router
from .deps import limiter

__all__ = ['plants_router', 'images_router', 'objects_router', 'limiter']

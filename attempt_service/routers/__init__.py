from .attempts import router as attempts_router

__all__ = ["attempts_router"]

from src.domain.models import Identity

__all__ = ["Identity"]

from reqport.models.collection import Collection, Folder
from reqport.models.request import Request
from reqport.models.environment import Environment, EnvironmentVariable

__all__ = [
    "Collection",
    "Folder",
    "Request",
    "Environment",
    "EnvironmentVariable",
]

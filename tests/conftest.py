"""Shared fixtures: a small sample application written to a temp directory."""

from pathlib import Path
from typing import Dict

import pytest

from analyzers.diagnostics import DiagnosticCollector
from analyzers.source_parser import SourceParser
from config import GeneratorConfig
from generators.openapi_generator import OpenApiGenerator

MODELS = '''\
"""Persistence models."""
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db import Base


class User(Base):
    """A registered user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False)
    email = Column(String(120))
    posts = relationship("Post", back_populates="author")


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"))
    author = relationship("User", back_populates="posts", uselist=False)
'''

VALIDATORS = '''\
from app.validation import Validate


class UserValidate(Validate):
    rules = {
        "name": "required|string",
        "age": "integer",
    }
'''

VIEWS = '''\
"""Item and user endpoints."""
from typing import List, Optional

from fastapi import APIRouter

from app.models import User

router = APIRouter()


@router.get("/items/{id}")
def show_item(id: int):
    """Fetch one item."""
    return {"id": id}


@router.get("/users")
def list_users(page: int = 1, search: Optional[str] = None) -> List[User]:
    """List users.

    :param page: Page number
    :param search: Filter by name
    """
    return []


@router.post("/users")
@validate(UserValidate)
@jwt_required
def create_user(request):
    """Create a user."""
    return None


@router.get("/users/{user_id}")
@jwt_required
def get_user(user_id: int) -> User:
    """Fetch one user."""
    return None
'''

SAMPLE_APP: Dict[str, str] = {
    "app/__init__.py": "",
    "app/models.py": MODELS,
    "app/validators.py": VALIDATORS,
    "app/views.py": VIEWS,
}


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    for relative, text in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return root


def parse(text: str, path: str = "app/sample.py"):
    """SourceUnit of ``text``; fails the test if it does not parse."""
    unit = SourceParser(DiagnosticCollector(log=False)).parse(text, path, "fp", SourceParser.module_name(path))
    assert unit is not None
    return unit


@pytest.fixture
def sample_app(tmp_path: Path) -> Path:
    return write_tree(tmp_path / "project", SAMPLE_APP)


@pytest.fixture
def generator(sample_app: Path) -> OpenApiGenerator:
    return OpenApiGenerator(GeneratorConfig(source_root=str(sample_app), title="Sample API"))

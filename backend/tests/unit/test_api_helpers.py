"""Tests for shared API helpers."""

import pytest
from fastapi import HTTPException

from api.helpers import get_or_404
from models import Client, Item


class TestGetOr404:
    """Tests for get_or_404."""

    def test_returns_entity(self, db, practice_client):
        """Returns the entity when it exists."""
        result = get_or_404(db, Client, practice_client.id, "Client not found")
        assert result.id == practice_client.id
        assert result.first_name == "Ada"

    def test_raises_404_when_missing(self, db):
        """Raises HTTPException 404 when the entity doesn't exist."""
        with pytest.raises(HTTPException) as exc_info:
            get_or_404(db, Client, "nonexistent-id", "Client not found")
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Client not found"

    def test_default_detail_message(self, db):
        with pytest.raises(HTTPException) as exc_info:
            get_or_404(db, Item, "missing")
        assert exc_info.value.detail == "Not found"

    def test_works_with_different_models(self, db, item):
        """Works with the Item model."""
        result = get_or_404(db, Item, item.id, "Item not found")
        assert result.institution_name == "First Platypus Bank"

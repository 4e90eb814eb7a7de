"""Tests for restaurant management CLI."""

from __future__ import annotations

import argparse
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from scripts.manage_tenant import (
    check_rls,
    create_restaurant,
    deactivate_restaurant,
    list_restaurants,
    set_poster,
)

from restaurant_checklist.storage.orm import Restaurant


@pytest.fixture()
def mock_session() -> MagicMock:
    """Create a mock sync Session."""
    session = MagicMock()
    session.__enter__ = MagicMock(return_value=session)
    session.__exit__ = MagicMock(return_value=False)
    return session


@pytest.fixture()
def _patch_session(mock_session: MagicMock) -> MagicMock:
    """Patch get_sync_session to return mock."""
    with patch("scripts.manage_tenant.get_sync_session", return_value=mock_session):
        yield mock_session


def _lookup_returns(mock_session: MagicMock, value: Any) -> None:
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = value
    mock_session.execute.return_value = mock_result


def _row(**fields: Any) -> MagicMock:
    # MagicMock(name=...) names the mock itself, so set attributes afterwards.
    row = MagicMock()
    for key, value in fields.items():
        setattr(row, key, value)
    return row


class TestCreateRestaurant:
    def test_create_restaurant(
        self,
        _patch_session: MagicMock,
        mock_session: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """create-restaurant adds an active restaurant."""
        _lookup_returns(mock_session, None)

        args = argparse.Namespace(
            id="rest-a", name="Pasta Place", currency="UAH", locale="uk-UA"
        )
        create_restaurant(args)

        mock_session.add.assert_called_once()
        restaurant: Restaurant = mock_session.add.call_args[0][0]
        assert isinstance(restaurant, Restaurant)
        assert restaurant.id == "rest-a"
        assert restaurant.name == "Pasta Place"
        assert restaurant.is_active is True
        mock_session.commit.assert_called_once()

        captured = capsys.readouterr()
        assert "Restaurant created: Pasta Place (id: rest-a)" in captured.out

    def test_create_duplicate(
        self,
        _patch_session: MagicMock,
        mock_session: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        _lookup_returns(mock_session, MagicMock(spec=Restaurant))

        args = argparse.Namespace(
            id="rest-a", name="Pasta Place", currency="UAH", locale="uk-UA"
        )
        with pytest.raises(SystemExit) as exc_info:
            create_restaurant(args)

        assert exc_info.value.code == 1
        mock_session.add.assert_not_called()
        assert "already exists" in capsys.readouterr().err


class TestListRestaurants:
    def test_list_restaurants(
        self,
        _patch_session: MagicMock,
        mock_session: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        rows = [
            _row(
                id="rest-a",
                name="Pasta Place",
                is_active=True,
                user_count=3,
                order_count=12,
            ),
            _row(
                id="rest-b",
                name="Closed Cafe",
                is_active=False,
                user_count=0,
                order_count=0,
            ),
        ]
        mock_result = MagicMock()
        mock_result.all.return_value = rows
        mock_session.execute.return_value = mock_result

        list_restaurants(argparse.Namespace())

        out = capsys.readouterr().out
        assert "rest-a [Pasta Place] (active, 3 users, 12 orders)" in out
        assert "rest-b [Closed Cafe] (inactive" in out

    def test_list_empty(
        self,
        _patch_session: MagicMock,
        mock_session: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        mock_result = MagicMock()
        mock_result.all.return_value = []
        mock_session.execute.return_value = mock_result

        list_restaurants(argparse.Namespace())

        assert "No restaurants found." in capsys.readouterr().out


class TestSetPoster:
    def test_set_poster(
        self,
        _patch_session: MagicMock,
        mock_session: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        restaurant = MagicMock(spec=Restaurant)
        _lookup_returns(mock_session, restaurant)

        set_poster(
            argparse.Namespace(id="rest-a", token="secret-token-xyz", account="pasta")
        )

        assert restaurant.poster_token == "secret-token-xyz"
        assert restaurant.poster_account_name == "pasta"
        mock_session.commit.assert_called_once()
        out = capsys.readouterr().out
        assert "account: pasta" in out
        assert "secret-token-xyz" not in out

    def test_unknown_restaurant(
        self, _patch_session: MagicMock, mock_session: MagicMock
    ) -> None:
        _lookup_returns(mock_session, None)
        with pytest.raises(SystemExit) as exc_info:
            set_poster(argparse.Namespace(id="ghost", token="t", account="a"))
        assert exc_info.value.code == 1


class TestDeactivateRestaurant:
    def test_deactivate(
        self,
        _patch_session: MagicMock,
        mock_session: MagicMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        restaurant = MagicMock(spec=Restaurant)
        restaurant.is_active = True
        _lookup_returns(mock_session, restaurant)

        deactivate_restaurant(argparse.Namespace(id="rest-a"))

        assert restaurant.is_active is False
        mock_session.commit.assert_called_once()
        mock_session.delete.assert_not_called()
        assert "Restaurant deactivated: rest-a" in capsys.readouterr().out

    def test_already_inactive(
        self, _patch_session: MagicMock, mock_session: MagicMock
    ) -> None:
        restaurant = MagicMock(spec=Restaurant)
        restaurant.is_active = False
        _lookup_returns(mock_session, restaurant)

        with pytest.raises(SystemExit):
            deactivate_restaurant(argparse.Namespace(id="rest-a"))
        mock_session.commit.assert_not_called()


class TestCheckRls:
    def test_healthy(self) -> None:
        with patch(
            "scripts.manage_tenant._check_rls", new=AsyncMock(return_value=True)
        ) as mock_check:
            check_rls(argparse.Namespace(restaurant=["rest-a"]))
        mock_check.assert_awaited_once_with(["rest-a"])

    def test_unprotected_table_exits(self) -> None:
        with (
            patch(
                "scripts.manage_tenant._check_rls", new=AsyncMock(return_value=False)
            ),
            pytest.raises(SystemExit) as exc_info,
        ):
            check_rls(argparse.Namespace(restaurant=None))
        assert exc_info.value.code == 1

from unittest.mock import MagicMock, patch

import pytest

from scheduling_service.db import session as db_session_module


def test_get_db_closes_session():
    mock_session = MagicMock()
    with patch.object(db_session_module, "SessionLocal", return_value=mock_session):
        generator = db_session_module.get_db()
        assert next(generator) is mock_session
        with pytest.raises(StopIteration):
            next(generator)

    mock_session.close.assert_called_once()


def test_get_db_closes_session_on_error():
    mock_session = MagicMock()
    with patch.object(db_session_module, "SessionLocal", return_value=mock_session):
        generator = db_session_module.get_db()
        next(generator)
        with pytest.raises(ValueError):
            generator.throw(ValueError("caller failed"))

    mock_session.close.assert_called_once()

import importlib
import pathlib
import sys
from datetime import datetime, timezone

from jose import jwt

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))


def test_access_token_expiration_respects_env(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1")
    import kidpoints.auth as auth
    importlib.reload(auth)

    token = auth.create_access_token(data={"sub": "test"})
    decoded = jwt.decode(token, auth.SECRET_KEY, algorithms=[auth.ALGORITHM])
    exp = datetime.fromtimestamp(decoded["exp"], tz=timezone.utc)
    delta = exp - datetime.now(timezone.utc)
    assert 45 <= delta.total_seconds() <= 75

    monkeypatch.delenv("ACCESS_TOKEN_EXPIRE_MINUTES", raising=False)
    importlib.reload(auth)


def test_child_token_subject():
    from kidpoints.auth import ALGORITHM, SECRET_KEY, create_child_token
    from kidpoints.models import Child

    token = create_child_token(Child(id=7, parent_id=1, name="Kid", access_code="KID"))
    decoded = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    assert decoded["sub"] == "child:7"

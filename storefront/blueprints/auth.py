from __future__ import annotations

from functools import wraps

from flask import abort, session


def is_admin() -> bool:
    # Authentication happens upstream; the session only carries the resulting flag.
    return bool(session.get("is_admin"))


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not is_admin():
            abort(403)
        return view(*args, **kwargs)

    return wrapped

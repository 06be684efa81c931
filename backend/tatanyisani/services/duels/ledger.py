"""LP balance primitives.

Every change is a single atomic ``UPDATE`` with the delta computed by the
database. None of these functions commit: the calling operation owns the
transaction so a debit rolls back together with the write it pays for.
"""

from sqlalchemy import update

from tatanyisani import db
from tatanyisani.models import User
from .errors import InsufficientFunds


def balance(user_id: int) -> int:
    points = db.session.execute(
        db.select(User.points).where(User.id == user_id)
    ).scalar_one_or_none()
    return int(points or 0)


def credit(user_id: int, amount: int) -> None:
    if amount < 0:
        raise ValueError('credit amount must not be negative')
    if amount == 0:
        return
    db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + amount)
        .execution_options(synchronize_session=False)
    )


def debit(user_id: int, amount: int) -> None:
    """Take ``amount`` from the balance, or raise InsufficientFunds.

    The balance check and the decrement are one conditional statement, so two
    concurrent duels cannot both spend the same points.
    """
    if amount <= 0:
        raise ValueError('debit amount must be positive')
    result = db.session.execute(
        update(User)
        .where(User.id == user_id, User.points >= amount)
        .values(points=User.points - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientFunds(f'{amount} LP required')

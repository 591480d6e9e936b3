from datetime import datetime

from repository import Repository


def set_created_at(repo: Repository, obj, when: datetime) -> None:
    with repo.transaction():
        repo.update(obj, created_at=when)

"""
Generic Repository (Repository Pattern)

Concrete repositories bind a model class and add their own query methods;
create/update/delete commit immediately unless told otherwise.
"""
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from dockout.database import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    def __init__(self, model: Type[T], db: Session):
        self.model = model
        self.db = db

    def get_by_id(self, entity_id: Any) -> Optional[T]:
        return self.db.get(self.model, entity_id)

    def get_by_ids(self, entity_ids: List[Any]) -> List[T]:
        if not entity_ids:
            return []
        return self.db.query(self.model).filter(self.model.id.in_(entity_ids)).all()

    def create(self, obj: T, commit: bool = True) -> T:
        self.db.add(obj)
        if commit:
            self.db.commit()
            self.db.refresh(obj)
        else:
            self.db.flush()
        return obj

    def update(self, obj: T, updates: Dict[str, Any], commit: bool = True) -> T:
        for key, value in updates.items():
            setattr(obj, key, value)
        if commit:
            self.db.commit()
            self.db.refresh(obj)
        else:
            self.db.flush()
        return obj

    def delete(self, obj: T, commit: bool = True) -> None:
        self.db.delete(obj)
        if commit:
            self.db.commit()

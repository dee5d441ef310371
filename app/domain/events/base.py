"""
Domain Event Base Class
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict
import json


@dataclass
class DomainEvent:
    """Base class for notifications handed to the broadcast publisher"""
    timestamp: datetime

    @property
    def event_name(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        # Routing key for subscribers
        data['__event_type__'] = self.event_name
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(cls, data: Dict):
        data = dict(data)
        if 'timestamp' in data and isinstance(data['timestamp'], str):
            data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        data.pop('__event_type__', None)
        return cls(**data)

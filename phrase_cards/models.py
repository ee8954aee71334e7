"""
Data models for phrase cards and their practice sessions.

Records are persisted as JSON using the camelCase field names of the
stored format; enumerated fields are validated when a record is built.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional
import json
import time
import uuid

from .config import Config
from .errors import error_handler, InputValidationError, InvalidRange


class MasteryStatus(Enum):
    """Progress of a card in one practice mode."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    MASTERED = "mastered"


class PracticeMode(Enum):
    """How a session was practiced."""
    CIRCLE_OF_FIFTHS = "circleOfFifths"
    CHROMATIC = "chromatic"
    FREE = "free"


# Tempos offered when logging a session
TEMPO_CHOICES = list(range(Config.TEMPO_MIN, Config.TEMPO_MAX + 1, Config.TEMPO_STEP))


def now_ms() -> float:
    """Current time as epoch milliseconds."""
    return time.time() * 1000


def generate_id() -> str:
    """
    Generate a unique card or session ID.

    Returns:
        A unique identifier string
    """
    return str(uuid.uuid4())


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InputValidationError(
            error_handler.invalid_value(field_name, value, f"one of: {allowed}")
        )


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass
class Trim:
    """The playable window [start_sec, end_sec) of a card's audio."""
    start_sec: float
    end_sec: float

    def __post_init__(self):
        if self.start_sec < 0 or self.end_sec <= self.start_sec:
            raise InvalidRange(error_handler.invalid_range(self.start_sec, self.end_sec))
        self.start_sec = float(self.start_sec)
        self.end_sec = float(self.end_sec)

    @property
    def duration(self) -> float:
        return self.end_sec - self.start_sec

    def to_dict(self) -> Dict[str, Any]:
        return {'startSec': self.start_sec, 'endSec': self.end_sec}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Trim':
        return cls(start_sec=data['startSec'], end_sec=data['endSec'])


@dataclass
class Mastery:
    """Mastery status tracked independently per practice mode."""
    circle_of_fifths: MasteryStatus = MasteryStatus.NOT_STARTED
    chromatic: MasteryStatus = MasteryStatus.NOT_STARTED

    def __post_init__(self):
        self.circle_of_fifths = _coerce_enum(MasteryStatus, self.circle_of_fifths, 'mastery.circleOfFifths')
        self.chromatic = _coerce_enum(MasteryStatus, self.chromatic, 'mastery.chromatic')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'circleOfFifths': self.circle_of_fifths.value,
            'chromatic': self.chromatic.value
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Mastery':
        data = data or {}
        return cls(
            circle_of_fifths=data.get('circleOfFifths', MasteryStatus.NOT_STARTED.value),
            chromatic=data.get('chromatic', MasteryStatus.NOT_STARTED.value)
        )


@dataclass
class Session:
    """One recorded practice attempt."""
    id: str
    card_id: str
    date: float  # epoch milliseconds
    mode: PracticeMode
    tempos_achieved: List[int] = field(default_factory=list)
    error_rate: float = 0.0  # percent
    notes: Optional[str] = None

    def __post_init__(self):
        self.mode = _coerce_enum(PracticeMode, self.mode, 'session.mode')
        self.tempos_achieved = list(self.tempos_achieved)
        for tempo in self.tempos_achieved:
            if not _is_positive_int(tempo):
                raise InputValidationError(
                    error_handler.invalid_value('session.temposAchieved', tempo, "positive integer BPM")
                )
        if isinstance(self.error_rate, bool) or not 0 <= self.error_rate <= 100:
            raise InputValidationError(
                error_handler.invalid_value('session.errorRate', self.error_rate, "a percentage from 0 to 100")
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            'id': self.id,
            'cardId': self.card_id,
            'date': self.date,
            'mode': self.mode.value,
            'temposAchieved': list(self.tempos_achieved),
            'errorRate': self.error_rate
        }
        if self.notes is not None:
            data['notes'] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        """Create instance from dictionary."""
        return cls(
            id=data['id'],
            card_id=data['cardId'],
            date=data['date'],
            mode=data['mode'],
            tempos_achieved=data.get('temposAchieved') or [],
            error_rate=data.get('errorRate', 0),
            notes=data.get('notes')
        )


@dataclass
class Card:
    """One phrase-practice unit: audio window, metadata and session log."""
    id: str
    title: str
    trim: Trim
    created_at: float
    updated_at: float
    mastery: Mastery = field(default_factory=Mastery)
    audio_blob_id: str = ""
    source: Optional[str] = None
    comments: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    bpm_target: Optional[int] = None
    sessions: List[Session] = field(default_factory=list)
    archived_max_tempo: int = 0  # best tempo among sessions moved to the archive

    def __post_init__(self):
        if not self.id:
            raise InputValidationError(error_handler.invalid_value('id', self.id, "a non-empty identifier"))
        if self.bpm_target is not None and not _is_positive_int(self.bpm_target):
            raise InputValidationError(
                error_handler.invalid_value('bpmTarget', self.bpm_target, "a positive integer or nothing")
            )
        if self.archived_max_tempo != 0 and not _is_positive_int(self.archived_max_tempo):
            raise InputValidationError(
                error_handler.invalid_value(
                    'maxTempoArchived', self.archived_max_tempo, "0 or a positive integer BPM"
                )
            )
        self.tags = list(self.tags)

    @property
    def has_payload(self) -> bool:
        return self.audio_blob_id == self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            'id': self.id,
            'title': self.title,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'audioBlobId': self.audio_blob_id,
            'trim': self.trim.to_dict(),
            'tags': list(self.tags),
            'mastery': self.mastery.to_dict(),
            'sessions': [session.to_dict() for session in self.sessions]
        }
        if self.source is not None:
            data['source'] = self.source
        if self.comments is not None:
            data['comments'] = self.comments
        if self.bpm_target is not None:
            data['bpmTarget'] = self.bpm_target
        if self.archived_max_tempo:
            data['maxTempoArchived'] = self.archived_max_tempo
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Card':
        """Create instance from dictionary."""
        return cls(
            id=data['id'],
            title=data.get('title', ''),
            trim=Trim.from_dict(data['trim']),
            created_at=data['createdAt'],
            updated_at=data['updatedAt'],
            mastery=Mastery.from_dict(data.get('mastery')),
            audio_blob_id=data.get('audioBlobId') or "",
            source=data.get('source'),
            comments=data.get('comments'),
            tags=data.get('tags') or [],
            bpm_target=data.get('bpmTarget'),
            sessions=[Session.from_dict(s) for s in data.get('sessions') or []],
            archived_max_tempo=data.get('maxTempoArchived') or 0
        )

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> 'Card':
        """Deserialize from JSON string."""
        return cls.from_dict(json.loads(json_str))


def parse_tags(text: Optional[str]) -> List[str]:
    """Split a comma separated tag string, dropping blanks."""
    if not text or not text.strip():
        return []
    return [tag.strip() for tag in text.split(',') if tag.strip()]


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def new_card(
    title: str,
    start_sec: float,
    end_sec: float,
    source: Optional[str] = None,
    comments: Optional[str] = None,
    tags: Optional[List[str]] = None,
    bpm_target: Optional[int] = None,
    mastery: Optional[Mastery] = None,
    card_id: Optional[str] = None
) -> Card:
    """
    Build a card ready for its first save.

    The card has no payload yet; the first save must supply one.

    Args:
        title: Card title (blank allowed)
        start_sec: Start of the trim window in seconds
        end_sec: End of the trim window in seconds
        source: Where the phrase comes from
        comments: Free-form notes
        tags: Tag list
        bpm_target: Target tempo in BPM
        mastery: Initial mastery, not started in both modes by default
        card_id: Identifier to use instead of a generated one

    Returns:
        A new Card

    Raises:
        InvalidRange: If the trim window is malformed
    """
    timestamp = now_ms()
    return Card(
        id=card_id or generate_id(),
        title=(title or '').strip(),
        trim=Trim(start_sec, end_sec),
        created_at=timestamp,
        updated_at=timestamp,
        mastery=mastery or Mastery(),
        source=_blank_to_none(source),
        comments=_blank_to_none(comments),
        tags=list(tags or []),
        bpm_target=bpm_target or None
    )


def new_session(
    card: Card,
    mode,
    tempos_achieved: Optional[List[int]] = None,
    error_rate: float = 0.0,
    notes: Optional[str] = None
) -> Session:
    """Build a session owned by `card`, dated now."""
    return Session(
        id=generate_id(),
        card_id=card.id,
        date=now_ms(),
        mode=mode,
        tempos_achieved=list(tempos_achieved or []),
        error_rate=error_rate,
        notes=_blank_to_none(notes)
    )


def max_tempo(card: Card) -> int:
    """
    Highest tempo achieved across all of a card's sessions, 0 if none.

    Sessions moved to the archive count through `card.archived_max_tempo`.
    """
    embedded = max(
        (tempo for session in card.sessions for tempo in session.tempos_achieved),
        default=0
    )
    return max(embedded, card.archived_max_tempo or 0)


def tempo_label(card: Card) -> str:
    """Short tempo summary shown in the card list."""
    best = max_tempo(card)
    return f"Max Tempo: {best} BPM" if best > 0 else "No sessions"


def sort_by_recent(cards: List[Card]) -> List[Card]:
    """Cards in list-view order, most recently updated first."""
    return sorted(cards, key=lambda card: card.updated_at or 0, reverse=True)


def sessions_by_date(card: Card) -> List[Session]:
    """A card's sessions newest first, for display."""
    return sorted(card.sessions, key=lambda session: session.date or 0, reverse=True)

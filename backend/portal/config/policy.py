"""Product-policy settings for the permission evaluator."""
from typing import FrozenSet, Iterable, Union
from portal.constants.permissions import TicketStatus

DEFAULT_OWNER_EDITABLE = 'draft'


def parse_owner_editable_statuses(raw: Union[str, Iterable[str], None]) -> FrozenSet[TicketStatus]:
    """OWNER_EDITABLE_STATUSES as comma list ('draft,additional_info_requested') or iterable.

    Unknown names are a startup error, not silently ignored.
    """
    if raw is None or raw == '':
        raw = DEFAULT_OWNER_EDITABLE
    names = raw.split(',') if isinstance(raw, str) else list(raw)
    statuses = set()
    for name in names:
        name = name.strip() if isinstance(name, str) else name
        if not name:
            continue
        try:
            statuses.add(TicketStatus(name))
        except ValueError:
            raise ValueError(f'OWNER_EDITABLE_STATUSES contains unknown status {name!r}')
    return frozenset(statuses)


def parse_flag(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or '').strip().lower() in ('1', 'true', 'yes', 'on')

from .broadcaster import Broadcaster
from .network_core import RelayConfig, RelayCore, main_loop
from .protocol import ActionRecord, parse_action
from .reaper import Reaper
from .registration import RegistrationEngine
from .registry import Role, Session, SessionRegistry
from .transport import Transport, WebSocketTransport

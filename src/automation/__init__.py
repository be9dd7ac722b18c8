from src.automation.buttons import Button, InterfaceButton, format_buttons, parse_buttons
from src.automation.encoding import PACKET_SIZE, encode_packet
from src.automation.input_transport import (
    InputTransport,
    MockInputTransport,
    UdpInputTransport,
)
from src.automation.stop_hotkey import StopHotkeyListener
from src.automation.strategy import SoftResetStrategy, build_command

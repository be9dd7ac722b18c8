import socket
import unittest

from src.automation.buttons import Button
from src.automation.encoding import RELEASE_PACKET, encode_packet
from src.automation.input_transport import MockInputTransport, UdpInputTransport, split_address
from src.automation.stop_hotkey import StopHotkeyListener, normalize_key_token
from src.models import InputCommand


class SplitAddressTests(unittest.TestCase):
    def test_host_and_port(self) -> None:
        self.assertEqual(split_address("10.0.0.5:4951"), ("10.0.0.5", 4951))

    def test_bare_host_uses_default_port(self) -> None:
        self.assertEqual(split_address("10.0.0.5"), ("10.0.0.5", 4950))
        self.assertEqual(split_address("console.local", default_port=9000), ("console.local", 9000))

    def test_empty(self) -> None:
        self.assertEqual(split_address(""), ("", 4950))


class MockTransportTests(unittest.TestCase):
    def test_send_requires_connection(self) -> None:
        transport = MockInputTransport()
        self.assertFalse(transport.send(InputCommand(buttons=Button.A)))
        self.assertEqual(transport.command_log, [])

    def test_records_commands_and_release(self) -> None:
        transport = MockInputTransport()
        self.assertTrue(transport.connect("127.0.0.1:4950"))
        self.assertTrue(transport.send(InputCommand(buttons=Button.A)))
        self.assertTrue(transport.release_all())
        self.assertEqual(transport.command_log, [InputCommand(buttons=Button.A), InputCommand()])
        transport.clear_log()
        self.assertEqual(transport.command_log, [])
        transport.close()
        self.assertFalse(transport.is_connected())


class UdpTransportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.receiver.bind(("127.0.0.1", 0))
        self.receiver.settimeout(2.0)
        self.port = self.receiver.getsockname()[1]
        self.transport = UdpInputTransport()

    def tearDown(self) -> None:
        self.transport.close()
        self.receiver.close()

    def test_sends_encoded_packets(self) -> None:
        self.assertTrue(self.transport.connect(f"127.0.0.1:{self.port}"))
        command = InputCommand(buttons=Button.L | Button.R | Button.START)
        self.assertTrue(self.transport.send(command))
        self.assertEqual(self.receiver.recv(64), encode_packet(command))
        self.assertTrue(self.transport.release_all())
        self.assertEqual(self.receiver.recv(64), RELEASE_PACKET)

    def test_connect_without_host_fails(self) -> None:
        with self.assertLogs("src.automation.input_transport", level="ERROR"):
            self.assertFalse(self.transport.connect(""))
        self.assertFalse(self.transport.is_connected())

    def test_describe(self) -> None:
        self.assertEqual(self.transport.describe(), "UdpInputTransport(unconnected)")
        self.transport.connect(f"127.0.0.1:{self.port}")
        self.assertEqual(self.transport.describe(), f"UdpInputTransport(127.0.0.1:{self.port})")


class StopHotkeyTests(unittest.TestCase):
    def test_normalize_key_token(self) -> None:
        self.assertEqual(normalize_key_token("Page_Up"), "page up")
        self.assertEqual(normalize_key_token("ESC"), "escape")

    def test_fires_once_on_matching_key(self) -> None:
        stops = []
        listener = StopHotkeyListener("F10", lambda: stops.append(True))
        self.assertFalse(listener.handle_key_down("f9"))
        self.assertTrue(listener.handle_key_down("f10"))
        self.assertFalse(listener.handle_key_down("f10"))
        self.assertEqual(stops, [True])

    def test_empty_key_is_disabled(self) -> None:
        listener = StopHotkeyListener("", lambda: None)
        self.assertFalse(listener.start())
        self.assertFalse(listener.handle_key_down(""))


if __name__ == "__main__":
    unittest.main()

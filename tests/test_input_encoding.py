import unittest

from src.automation.buttons import (
    Button,
    InterfaceButton,
    button_from_name,
    format_buttons,
    normalize_button_token,
    parse_buttons,
)
from src.automation.encoding import (
    PACKET_SIZE,
    RELEASE_PACKET,
    TOUCH_NONE,
    decode_words,
    encode_packet,
)
from src.models import AnalogStick, InputCommand, TouchPoint


class ButtonParsingTests(unittest.TestCase):
    def test_normalize_aliases(self) -> None:
        self.assertEqual(normalize_button_token(" D-Up "), "d_up")
        self.assertEqual(normalize_button_token("left"), "d_left")
        self.assertEqual(normalize_button_token(""), "")

    def test_soft_reset_combo(self) -> None:
        pad, interface = parse_buttons("L+R+START")
        self.assertEqual(pad, 0x308)
        self.assertEqual(interface, 0)

    def test_interface_buttons(self) -> None:
        self.assertEqual(parse_buttons("home"), (0, int(InterfaceButton.HOME)))
        self.assertEqual(parse_buttons("A+POWER"), (int(Button.A), int(InterfaceButton.POWER)))

    def test_unknown_token_is_ignored_with_warning(self) -> None:
        with self.assertLogs("src.automation.buttons", level="WARNING"):
            pad, _ = parse_buttons("A+TURBO")
        self.assertEqual(pad, int(Button.A))
        with self.assertLogs("src.automation.buttons", level="WARNING"):
            self.assertEqual(button_from_name("none"), 0)

    def test_strict_parsing_rejects_unknown_token(self) -> None:
        with self.assertRaisesRegex(ValueError, "STRAT"):
            parse_buttons("L+R+STRAT", strict=True)
        with self.assertRaises(ValueError):
            parse_buttons("A+none", strict=True)
        self.assertEqual(parse_buttons("L+R+START", strict=True), (0x308, 0))
        self.assertEqual(parse_buttons("home+up", strict=True), (int(Button.D_UP), int(InterfaceButton.HOME)))

    def test_format_buttons(self) -> None:
        self.assertEqual(format_buttons(Button.A | Button.START), "A+START")
        self.assertEqual(format_buttons(0), "")


class PacketEncodingTests(unittest.TestCase):
    def test_neutral_packet(self) -> None:
        packet = encode_packet(InputCommand())
        self.assertEqual(len(packet), PACKET_SIZE)
        self.assertEqual(packet[:4], b"\xff\x0f\x00\x00")
        self.assertEqual(
            decode_words(packet),
            (0xFFF, TOUCH_NONE, 0x800800, 0x80800081, 0),
        )
        self.assertEqual(packet, RELEASE_PACKET)

    def test_pressed_buttons_clear_bits(self) -> None:
        hid = decode_words(encode_packet(InputCommand(buttons=Button.A | Button.START)))[0]
        self.assertEqual(hid, 0xFF6)
        hid = decode_words(encode_packet(InputCommand(buttons=0xFFFF)))[0]
        self.assertEqual(hid, 0)

    def test_touch_word(self) -> None:
        command = InputCommand(touch=TouchPoint(x=100, y=50, active=True))
        self.assertEqual(decode_words(encode_packet(command))[1], (50 << 16) | 100)

    def test_circle_pad_extremes(self) -> None:
        right = InputCommand(circle_pad=AnalogStick(1.0, 0.0))
        left_down = InputCommand(circle_pad=AnalogStick(-1.0, -1.0))
        self.assertEqual(decode_words(encode_packet(right))[2], (0x800 << 12) | 0xDD0)
        self.assertEqual(decode_words(encode_packet(left_down))[2], (0x230 << 12) | 0x230)

    def test_c_stick_extremes(self) -> None:
        command = InputCommand(c_stick=AnalogStick(1.0, -1.0))
        self.assertEqual(decode_words(encode_packet(command))[3], (0x01 << 24) | (0xFF << 16) | 0x81)

    def test_interface_word(self) -> None:
        command = InputCommand(interface_buttons=InterfaceButton.HOME | InterfaceButton.POWER_LONG)
        self.assertEqual(decode_words(encode_packet(command))[4], 0x5)

    def test_decode_rejects_wrong_length(self) -> None:
        with self.assertRaises(ValueError):
            decode_words(b"\x00" * 19)


if __name__ == "__main__":
    unittest.main()

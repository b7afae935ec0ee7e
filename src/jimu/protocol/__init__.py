"""BLE protocol implementation."""

from .chunking import FrameAssembler
from .commands import (
    PREFERRED_WRITE_UUIDS,
    VENDOR_SERVICE_PREFIX,
    CommandCode,
    build_battery_command,
    build_brick_info_command,
    build_change_peripheral_id_command,
    build_change_servo_id_command,
    build_enable_module_command,
    build_error_report_command,
    build_eye_animation_command,
    build_eye_color_command,
    build_eye_segments_command,
    build_ping_command,
    build_probe_command,
    build_read_sensors_command,
    build_read_servo_position_command,
    build_rotate_motor_command,
    build_rotate_servos_command,
    build_set_servo_positions_command,
    build_status_command,
    build_stop_motor_command,
    build_ultrasonic_led_command,
    eye_id_to_mask,
    split_sensor_requests,
)
from .framing import DecodedFrame, decode, encode
from .responses import (
    is_ack_like,
    parse_battery,
    parse_command_result,
    parse_error_report,
    parse_sensor_batch,
    parse_servo_feedback,
    parse_status,
)

__all__ = [
    "CommandCode",
    "VENDOR_SERVICE_PREFIX",
    "PREFERRED_WRITE_UUIDS",
    "DecodedFrame",
    "encode",
    "decode",
    "FrameAssembler",
    "build_probe_command",
    "build_brick_info_command",
    "build_ping_command",
    "build_status_command",
    "build_battery_command",
    "build_error_report_command",
    "build_enable_module_command",
    "build_set_servo_positions_command",
    "build_rotate_servos_command",
    "build_read_servo_position_command",
    "build_change_servo_id_command",
    "build_rotate_motor_command",
    "build_stop_motor_command",
    "build_read_sensors_command",
    "split_sensor_requests",
    "build_eye_color_command",
    "build_eye_segments_command",
    "build_eye_animation_command",
    "build_ultrasonic_led_command",
    "build_change_peripheral_id_command",
    "eye_id_to_mask",
    "is_ack_like",
    "parse_command_result",
    "parse_error_report",
    "parse_status",
    "parse_battery",
    "parse_sensor_batch",
    "parse_servo_feedback",
]

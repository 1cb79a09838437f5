"""
Unit tests for message models, the packet filter and the event formatter.
"""

import pytest

from pointsmonitor.config.constants import EVENT_TYPES
from pointsmonitor.errors import ParseError
from pointsmonitor.eventsub.filters import FilterOptions, PacketFilter
from pointsmonitor.eventsub.formatter import EventFormatter
from pointsmonitor.eventsub.models import EventSubMessage, Session
from tests.conftest import (
    BROADCASTER_ID, keepalive_frame, notification_frame, redemption_event, welcome_frame,
)


class TestModels:
    """Test cases for frame parsing."""

    def test_from_frame(self):
        message = EventSubMessage.from_frame(welcome_frame("S9"))

        assert message.message_type == 'session_welcome'
        assert message.session['id'] == "S9"
        assert message.subscription == {}

    @pytest.mark.parametrize("frame", [None, "text", {'payload': {}}, {'metadata': {}},
                                       {'metadata': {'message_type': 'x'}, 'payload': [1]},
                                       {'metadata': {'message_type': 'x'}, 'payload': {'session': [1]}},
                                       {'metadata': {'message_type': 'x'}, 'payload': {'subscription': 'a'}},
                                       {'metadata': {'message_type': 'x'}, 'payload': {'event': 7}}])
    def test_from_frame_rejects_malformed(self, frame):
        with pytest.raises(ParseError):
            EventSubMessage.from_frame(frame)

    @pytest.mark.parametrize("payload", [None, [], "S1", {'id': ''}])
    def test_session_rejects_non_object(self, payload):
        with pytest.raises(ParseError):
            Session.from_payload(payload)

    def test_session_defaults_keepalive(self):
        session = Session.from_payload({'id': 'S1', 'keepalive_timeout_seconds': None})
        assert session.keepalive_timeout_seconds == 10


class TestPacketFilter:
    """Test cases for PacketFilter."""

    def test_keepalive_suppressed_by_default(self):
        packet_filter = PacketFilter()
        assert not packet_filter.should_process(EventSubMessage.from_frame(keepalive_frame()))

    def test_keepalive_allowed(self):
        packet_filter = PacketFilter(allow_keepalive=True)
        assert packet_filter.should_process(EventSubMessage.from_frame(keepalive_frame()))

    def test_event_type_switch(self):
        packet_filter = PacketFilter()
        packet_filter.configure(allow_redemption_add=False)

        redemption = EventSubMessage.from_frame(notification_frame(sub_type=EVENT_TYPES.REDEMPTION_ADD))
        reward = EventSubMessage.from_frame(notification_frame(sub_type=EVENT_TYPES.REWARD_ADD, event={}))
        assert not packet_filter.should_process(redemption)
        assert packet_filter.should_process(reward)

    def test_non_points_notification_passes(self):
        packet_filter = PacketFilter(FilterOptions(allow_redemption_add=False))
        message = EventSubMessage.from_frame(notification_frame(sub_type="channel.follow", event={}))
        assert packet_filter.should_process(message)

    def test_session_messages_always_pass(self):
        packet_filter = PacketFilter()
        assert packet_filter.should_process(EventSubMessage.from_frame(welcome_frame()))

    def test_configure_rejects_unknown(self):
        with pytest.raises(ValueError, match="allow_everything"):
            PacketFilter().configure(allow_everything=True)

    def test_reset_and_config(self):
        packet_filter = PacketFilter(allow_keepalive=True)
        packet_filter.reset()

        config = packet_filter.get_config()
        assert config['allow_keepalive'] is False
        assert config['allow_redemption_add'] is True

    def test_helpers(self):
        assert PacketFilter.is_keepalive(keepalive_frame())
        assert PacketFilter.is_keepalive(EventSubMessage.from_frame(keepalive_frame()))
        assert not PacketFilter.is_keepalive(welcome_frame())
        assert PacketFilter.is_points_event(EVENT_TYPES.REWARD_UPDATE)
        assert not PacketFilter.is_points_event("channel.follow")


class TestEventFormatter:
    """Test cases for EventFormatter."""

    def test_redemption(self):
        record = EventFormatter().format(EVENT_TYPES.REDEMPTION_ADD, redemption_event("extra ice"), "sub-1")
        details = record.details_dict()

        assert record.title == "REWARD REDEMPTION"
        assert record.subscription_id == "sub-1"
        assert details['Redeemer'] == "Viewer (viewer)"
        assert details['Reward'] == "Hydrate"
        assert details['Cost'] == "100 points"
        assert details['Broadcaster User ID'] == BROADCASTER_ID
        assert details['User Input'] == "extra ice"

    def test_redemption_without_input(self):
        record = EventFormatter().format(EVENT_TYPES.REDEMPTION_ADD, redemption_event())
        assert 'User Input' not in record.details_dict()

    def test_reward_created_optional_fields(self):
        event = {
            'id': 'reward-1', 'title': 'Hydrate', 'cost': 50,
            'broadcaster_user_name': 'TestStreamer', 'broadcaster_user_login': 'teststreamer',
            'is_enabled': True, 'is_user_input_required': False,
            'prompt': 'Drink water', 'background_color': '#00FF00',
            'global_cooldown_setting': {'is_enabled': True, 'global_cooldown_seconds': 60},
            'max_per_stream_setting': {'is_enabled': False, 'max_per_stream': 0},
        }
        record = EventFormatter().format(EVENT_TYPES.REWARD_ADD, event)
        details = record.details_dict()

        assert record.title == "CUSTOM REWARD CREATED"
        assert details['Broadcaster'] == "TestStreamer (teststreamer)"
        assert details['Prompt'] == "Drink water"
        assert details['Global Cooldown'] == "60s"
        assert 'Max Per Stream' not in details

    def test_reward_updated(self):
        record = EventFormatter().format(EVENT_TYPES.REWARD_UPDATE, {'title': 'Hydrate', 'cost': 75})
        assert record.title == "CUSTOM REWARD UPDATED"
        assert record.details_dict()['Cost'] == "75 points"

    def test_unknown_type(self):
        record = EventFormatter().format("channel.follow", {})

        assert record.title == "EVENT RECEIVED: channel.follow"
        assert record.details_dict() == {'Event Type': 'channel.follow', 'Event ID': 'N/A'}

    def test_log_event(self, caplog):
        formatter = EventFormatter(show_raw=False)
        record = formatter.format(EVENT_TYPES.REDEMPTION_ADD, redemption_event())

        with caplog.at_level("INFO", logger="pointsmonitor"):
            formatter.log_event(record)

        assert "REWARD REDEMPTION" in caplog.text
        assert "Reward: Hydrate" in caplog.text

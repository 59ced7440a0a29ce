import logging
from collections import defaultdict

from channels.layers import DEFAULT_CHANNEL_LAYER, get_channel_layer


logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """
    Tracks which live connections are joined to which conversations and fans
    new messages out to them through the channel layer.

    Each conversation maps to one channel layer group. The registry also keeps
    the reverse mapping (connection -> conversations) so a disconnecting
    socket can leave every group it joined.

    Publishing only enqueues onto the subscribers' channels; it never waits
    for a consumer to handle the message, and a full channel is skipped by the
    layer. There is no replay: a connection joining after a publish has to
    fetch history over HTTP.
    """

    def __init__(self, channel_layer=None, alias=DEFAULT_CHANNEL_LAYER):
        self._channel_layer = channel_layer
        self._alias = alias
        self._topics = defaultdict(set)

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer(self._alias)
        return self._channel_layer

    @staticmethod
    def group_name(conversation_id) -> str:
        return f"chat_{conversation_id}"

    def topics_for(self, channel_name) -> frozenset:
        return frozenset(self._topics.get(channel_name, ()))

    async def subscribe(self, channel_name, conversation_id):
        await self.channel_layer.group_add(self.group_name(conversation_id), channel_name)
        self._topics[channel_name].add(int(conversation_id))

    async def unsubscribe_all(self, channel_name):
        for conversation_id in self._topics.pop(channel_name, set()):
            await self.channel_layer.group_discard(self.group_name(conversation_id), channel_name)

    async def publish(self, conversation_id, message):
        await self.channel_layer.group_send(
            self.group_name(conversation_id),
            {"type": "new_message", "message": message},
        )
        logger.debug("Published message %s to conversation %s", message.get("id"), conversation_id)

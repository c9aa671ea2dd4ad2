from streamchat.db import CRUDCapability
from streamchat.models.chat import Conversation, Message


class ConversationCRUD(CRUDCapability[Conversation]):
    resource_db = Conversation


class ChatMessageCRUD(CRUDCapability[Message]):
    resource_db = Message


conversation_crud = ConversationCRUD(Conversation)
chat_message_crud = ChatMessageCRUD(Message)

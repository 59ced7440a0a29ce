from django.contrib import admin

from .models import Conversation, ConversationParticipant, Message


class ConversationParticipantInline(admin.TabularInline):
    model = ConversationParticipant
    extra = 0
    can_delete = False
    readonly_fields = ["user", "joined_at"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ["id", "pair_key", "created_at", "updated_at"]
    search_fields = ["pair_key", "participants__user__username"]
    date_hierarchy = "updated_at"
    inlines = [ConversationParticipantInline]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ["id", "conversation", "sender", "created_at"]
    list_filter = ["created_at"]
    search_fields = ["content", "sender__username"]
    readonly_fields = ["conversation", "sender", "content", "created_at"]

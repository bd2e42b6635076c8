from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field


class AuthRegisterRequest(BaseModel):
    email: str
    password: str
    display_name: Optional[str] = None
    device_id: Optional[str] = None


class AuthLoginRequest(BaseModel):
    email: str
    password: str
    captcha_token: Optional[str] = None
    device_id: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    user_id: str
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str
    email: Optional[str] = None


class AuthLogoutResponse(BaseModel):
    revoked: bool


class AuthLogoutAllResponse(BaseModel):
    revoked: int


class AuthMeResponse(BaseModel):
    user_id: str
    email: str
    display_name: str
    is_admin: bool
    subscription_status: str
    is_pro: bool
    created_at: str
    last_login: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_image_url: Optional[str] = None


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"


class NotificationPreferences(BaseModel):
    prayer_reminders: Optional[bool] = None
    bible_reading: Optional[bool] = None
    journal_prompts: Optional[bool] = None
    habit_reminders: Optional[bool] = None
    frequency: Optional[str] = None
    custom_days: Optional[List[str]] = None
    quiet_hours: Optional[QuietHours] = None


class PreferencesUpdateRequest(BaseModel):
    notification_preferences: Optional[NotificationPreferences] = None
    theme: Optional[str] = None
    verse_translation: Optional[str] = None


class ChatStreamRequest(BaseModel):
    message: str
    thread_id: Optional[str] = None


class ThreadRenameRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class SpeechRequest(BaseModel):
    text: str
    voice: Optional[str] = None


class JournalCreateRequest(BaseModel):
    title: Optional[str] = None
    content: str
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    mood_score: Optional[int] = Field(default=None, ge=1, le=10)
    spiritual_score: Optional[int] = Field(default=None, ge=1, le=10)
    related_scripture: Optional[str] = None


class JournalUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    mood_score: Optional[int] = Field(default=None, ge=1, le=10)
    spiritual_score: Optional[int] = Field(default=None, ge=1, le=10)
    related_scripture: Optional[str] = None


class PrayerCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    shared: bool = False
    tags: Optional[List[str]] = None


class PrayerUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    shared: Optional[bool] = None
    tags: Optional[List[str]] = None


class PrayerAnsweredRequest(BaseModel):
    answered_notes: Optional[str] = None


class MoodRequest(BaseModel):
    entry_date: Optional[date] = None
    mood_score: int = Field(ge=1, le=10)
    spiritual_score: int = Field(ge=1, le=10)
    prayer_time: bool = False
    bible_reading: bool = False
    church_attendance: bool = False
    notes: Optional[str] = None


class ReflectionRequest(BaseModel):
    content: str


class PlanGenerateRequest(BaseModel):
    topic: str
    duration_days: int = Field(default=7, ge=3, le=60)
    focus: Optional[str] = None
    difficulty: Optional[str] = None


class HabitCreateRequest(BaseModel):
    habit_name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    goal_frequency: str = "daily"
    goal_amount: int = Field(default=1, ge=1)


class HabitUpdateRequest(BaseModel):
    habit_name: Optional[str] = None
    description: Optional[str] = None
    goal_frequency: Optional[str] = None
    goal_amount: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class HabitLogRequest(BaseModel):
    completed_date: Optional[date] = None
    amount: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class GoalCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[date] = None
    milestones: Optional[List[str]] = None


class GoalUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[date] = None
    status: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)


class MilestoneCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    target_date: Optional[date] = None


class MilestoneUpdateRequest(BaseModel):
    is_completed: bool


class GoalReflectionRequest(BaseModel):
    content: str
    request_feedback: bool = False


class GoalGenerateRequest(BaseModel):
    focus_area: str
    timeframe: Optional[str] = None


class DevotionalGenerateRequest(BaseModel):
    tone: Optional[str] = None
    length: Optional[str] = None
    focus: Optional[str] = None


class DevotionalInteractionRequest(BaseModel):
    interaction_type: str
    prompt: str
    user_response: Optional[str] = None
    request_feedback: bool = True


class StudyGenerateRequest(BaseModel):
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    focus: Optional[str] = None


class StudyNotesRequest(BaseModel):
    user_notes: Optional[str] = None


class RecommendationGenerateRequest(BaseModel):
    time_range: str = "month"


class RecommendationUpdateRequest(BaseModel):
    is_viewed: Optional[bool] = None
    is_saved: Optional[bool] = None


class VerseCreateRequest(BaseModel):
    verse_reference: str
    verse_text: Optional[str] = None
    translation: Optional[str] = None


class VerseUpdateRequest(BaseModel):
    favorite: Optional[bool] = None
    verse_text: Optional[str] = None
    translation: Optional[str] = None


class PracticeRequest(BaseModel):
    game_type: str
    user_input: Optional[str] = None
    accuracy: Optional[float] = Field(default=None, ge=0, le=1)
    time_spent: Optional[int] = Field(default=None, ge=0)


class ChallengeProgressRequest(BaseModel):
    progress: int = Field(ge=0)


class SermonProcessRequest(BaseModel):
    file_path: Optional[str] = None


class ChannelRequest(BaseModel):
    channel_id: str
    channel_name: Optional[str] = None
    platform: str = "youtube"
    is_active: bool = True


class MonitorRequest(BaseModel):
    channel_ids: Optional[List[str]] = None
    force: bool = False


class LivestreamProcessRequest(BaseModel):
    channel_id: Optional[str] = None
    video_id: Optional[str] = None
    manual: bool = True


class IngestRequest(BaseModel):
    youtube_url: str


class CheckoutRequest(BaseModel):
    price_id: str
    success_url: str
    cancel_url: str
    mode: str = "subscription"


class PortalRequest(BaseModel):
    return_url: str


class PushSubscriptionRequest(BaseModel):
    subscription: dict


class PushUnsubscribeRequest(BaseModel):
    endpoint: str


class NotificationGenerateRequest(BaseModel):
    type: str = "single"
    notification_type: Optional[str] = None
    user_id: Optional[str] = None
    force: bool = False
    no_execution: bool = False

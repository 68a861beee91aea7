from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    JSON,
    ForeignKey,
    Index,
)


Base = declarative_base()


# ----------------------------
# Store
# ----------------------------
class StoreProduct(Base):
    __tablename__ = "store_products"
    id = Column(String, primary_key=True)
    slug = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    # physical | digital_tool | digital_download | subscription | bundle
    product_type = Column(String, nullable=False)
    # draft | active | archived
    status = Column(String, nullable=False, default="draft")
    currency = Column(String, nullable=False, default="usd")
    base_price_cents = Column(Integer, nullable=False, default=0)
    cover_image = Column(String, nullable=True)
    gallery = Column(JSON, nullable=False, default=list)
    related_product_ids = Column(JSON, nullable=False, default=list)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class StoreVariant(Base):
    __tablename__ = "store_product_variants"
    id = Column(String, primary_key=True)
    product_id = Column(String, ForeignKey("store_products.id",
                                           ondelete="CASCADE"),
                        nullable=False, index=True)
    sku = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    price_cents = Column(Integer, nullable=False)
    compare_at_cents = Column(Integer, nullable=True)
    # finite | unlimited
    inventory_mode = Column(String, nullable=False, default="unlimited")
    inventory_count = Column(Integer, nullable=True)
    weight_grams = Column(Integer, nullable=True)
    attributes = Column(JSON, nullable=False, default=dict)
    digital_delivery_url = Column(String, nullable=True)
    stripe_price_id = Column(String, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class StoreReview(Base):
    __tablename__ = "store_reviews"
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)
    rating = Column(Integer, nullable=False)
    title = Column(String, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    # pending | approved | rejected
    status = Column(String, nullable=False, default="pending")
    created_at = Column(Float, nullable=False)


class StoreOrder(Base):
    __tablename__ = "store_orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True)
    stripe_checkout_session_id = Column(String, nullable=True, unique=True)
    stripe_payment_intent_id = Column(String, nullable=True, index=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_customer_email = Column(String, nullable=True)

    # pending | paid | cancelled | refunded | fulfilled | partially_refunded
    status = Column(String, nullable=False, default="pending")
    currency = Column(String, nullable=False, default="usd")
    subtotal_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    shipping_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)

    shipping_carrier = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True)
    shipped_at = Column(Float, nullable=True)
    fulfilled_at = Column(Float, nullable=True)
    cancel_reason = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class StoreOrderItem(Base):
    __tablename__ = "store_order_items"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("store_orders.id",
                                          ondelete="CASCADE"),
                      nullable=False, index=True)
    product_id = Column(String, nullable=True)
    variant_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    variant_title = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(Integer, nullable=False, default=0)
    line_total_cents = Column(Integer, nullable=False, default=0)
    delivery_url = Column(String, nullable=True)


class StoreOrderEvent(Base):
    __tablename__ = "store_order_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, nullable=False, index=True)
    actor_user_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)


class StoreAdmin(Base):
    __tablename__ = "store_admins"
    user_id = Column(String, primary_key=True)
    # owner | manager | support
    role = Column(String, nullable=False)


class StoreWishlist(Base):
    __tablename__ = "store_wishlists"
    user_id = Column(String, primary_key=True)
    product_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    idempotency_key = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


# ----------------------------
# Fan vault
# ----------------------------
class FanProfile(Base):
    __tablename__ = "fan_profiles"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, default="")
    name = Column(String, nullable=False, default="Fan")
    bio = Column(Text, nullable=False, default="")
    profile_badge_id = Column(String, nullable=False, default="visionary")
    created_at = Column(Float, nullable=False)


class FanFavorite(Base):
    __tablename__ = "fan_favorites"
    user_id = Column(String, primary_key=True)
    # gallery | watch | listen
    type = Column(String, primary_key=True)
    item_id = Column(String, primary_key=True)
    title = Column(String, nullable=False, default="")
    href = Column(String, nullable=False, default="")
    image = Column(String, nullable=True)
    saved_at = Column(Float, nullable=False)


class FanBadge(Base):
    __tablename__ = "fan_badges"
    user_id = Column(String, primary_key=True)
    badge_id = Column(String, primary_key=True)
    label = Column(String, nullable=False)
    tier = Column(String, nullable=True)
    tip = Column(String, nullable=True)
    updated_at = Column(Float, nullable=False)


class FanEngagementProfile(Base):
    __tablename__ = "fan_engagement_profiles"
    user_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default="Fan")
    points = Column(Integer, nullable=False, default=120)
    streak = Column(Integer, nullable=False, default=1)
    last_seen_date = Column(String, nullable=True)
    daily_claim_date = Column(String, nullable=True)
    week_key = Column(String, nullable=False, default="")
    weekly_signal = Column(Integer, nullable=False, default=0)
    visited_paths = Column(JSON, nullable=False, default=list)
    reactions = Column(JSON, nullable=False, default=dict)
    missions = Column(JSON, nullable=False, default=dict)
    updated_at = Column(Float, nullable=False)


class FeedPost(Base):
    __tablename__ = "fan_feed_posts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    media_url = Column(String, nullable=True)
    # image | video | link
    media_type = Column(String, nullable=True)
    share_count = Column(Integer, nullable=False, default=0)
    # approved | flagged | rejected
    moderation_status = Column(String, nullable=False, default="approved")
    moderation_reason = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class FeedComment(Base):
    __tablename__ = "fan_feed_comments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("fan_feed_posts.id",
                                         ondelete="CASCADE"),
                     nullable=False, index=True)
    user_id = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    moderation_status = Column(String, nullable=False, default="approved")
    moderation_reason = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class FeedLike(Base):
    __tablename__ = "fan_feed_likes"
    post_id = Column(Integer, ForeignKey("fan_feed_posts.id",
                                         ondelete="CASCADE"),
                     primary_key=True)
    user_id = Column(String, primary_key=True)


class FeedPoll(Base):
    __tablename__ = "fan_feed_polls"
    post_id = Column(Integer, ForeignKey("fan_feed_posts.id",
                                         ondelete="CASCADE"),
                     primary_key=True)
    question = Column(Text, nullable=False)
    allow_multiple = Column(Boolean, nullable=False, default=False)
    expires_at = Column(Float, nullable=True)


class FeedPollOption(Base):
    __tablename__ = "fan_feed_poll_options"
    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("fan_feed_polls.post_id",
                                         ondelete="CASCADE"),
                     nullable=False, index=True)
    position = Column(Integer, nullable=False)
    label = Column(String, nullable=False)
    image_url = Column(String, nullable=True)


class FeedPollVote(Base):
    __tablename__ = "fan_feed_poll_votes"
    post_id = Column(Integer, ForeignKey("fan_feed_polls.post_id",
                                         ondelete="CASCADE"),
                     primary_key=True)
    option_id = Column(Integer, ForeignKey("fan_feed_poll_options.id",
                                           ondelete="CASCADE"),
                       primary_key=True)
    user_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


class FeedReport(Base):
    __tablename__ = "fan_feed_reports"
    id = Column(Integer, primary_key=True, autoincrement=True)
    reporter_id = Column(String, nullable=False)
    # post | comment
    target_type = Column(String, nullable=False)
    target_id = Column(Integer, nullable=False)
    reason_code = Column(String, nullable=False)
    details = Column(Text, nullable=False, default="")
    # open | reviewed | resolved | dismissed
    status = Column(String, nullable=False, default="open")
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class AppSetting(Base):
    __tablename__ = "app_settings"
    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(Float, nullable=False)


class TriviaQuestion(Base):
    __tablename__ = "trivia_questions"
    id = Column(String, primary_key=True)
    prompt = Column(Text, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    correct_option_index = Column(Integer, nullable=False, default=0)
    category = Column(String, nullable=False, default="general")
    # easy | medium | hard
    difficulty = Column(String, nullable=False, default="medium")
    image_url = Column(String, nullable=True)
    explanation = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class TriviaCampaign(Base):
    __tablename__ = "trivia_campaigns"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    question_ids = Column(JSON, nullable=False, default=list)
    start_at = Column(Float, nullable=False)
    end_at = Column(Float, nullable=True)
    cadence_minutes = Column(Integer, nullable=False, default=60)
    post_duration_minutes = Column(Integer, nullable=False, default=10)
    # draft | active | paused | completed
    status = Column(String, nullable=False, default="draft")
    look_and_feel = Column(JSON, nullable=False, default=dict)
    next_run_at = Column(Float, nullable=True)
    last_run_at = Column(Float, nullable=True)
    # index into question_ids for the next post
    cursor = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


# ----------------------------
# Live
# ----------------------------
class LiveSubscription(Base):
    __tablename__ = "fan_live_subscriptions"
    user_id = Column(String, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    email_alerts = Column(Boolean, nullable=False, default=True)
    sms_alerts = Column(Boolean, nullable=False, default=False)
    sms_phone = Column(String, nullable=True)
    # youtube | instagram | facebook | twitch | multi
    preferred_platform = Column(String, nullable=False, default="multi")
    updated_at = Column(Float, nullable=False)


class LiveDispatch(Base):
    __tablename__ = "fan_live_dispatches"
    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(Float, nullable=False)
    created_by = Column(String, nullable=False, default="manual")
    # live | offline | test
    status = Column(String, nullable=False)
    title = Column(String, nullable=False)
    stream_url = Column(String, nullable=False)
    platform = Column(String, nullable=False)
    email_count = Column(Integer, nullable=False, default=0)
    sms_count = Column(Integer, nullable=False, default=0)
    meta = Column("metadata", JSON, nullable=False, default=dict)


class LiveEngagementEvent(Base):
    __tablename__ = "fan_live_engagement_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    dispatch_id = Column(Integer, nullable=False, index=True)
    # open | click
    event_type = Column(String, nullable=False)
    recipient = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)


# ----------------------------
# Concierge
# ----------------------------
class BookingInquiry(Base):
    __tablename__ = "booking_inquiries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_token = Column(Text, nullable=False)
    contact_name = Column(String, nullable=False, default="")
    contact_email = Column(String, nullable=False)
    event_name = Column(String, nullable=False, default="")
    venue = Column(String, nullable=False)
    estimate_total = Column(Integer, nullable=False)
    estimate_low = Column(Integer, nullable=False)
    estimate_high = Column(Integer, nullable=False)
    risk_score = Column(Integer, nullable=False)
    note = Column(Text, nullable=False, default="")
    created_at = Column(Float, nullable=False)


Index("idx_orders_created_at", StoreOrder.created_at.desc())
Index("idx_feed_posts_created_at", FeedPost.created_at.desc())

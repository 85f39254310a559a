offer_status_sql = """
CREATE TYPE offer_status AS ENUM ('pending', 'accepted', 'rejected');
"""

swap_offers_sql = """
CREATE TABLE swap_offers (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    swap_id UUID REFERENCES swaps(id) ON DELETE SET NULL,

    sender_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    receiver_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,

    title TEXT NOT NULL,
    skill_offered TEXT NOT NULL,
    skill_wanted TEXT NOT NULL,
    category TEXT,
    format TEXT,
    address TEXT,
    session_days TEXT[] NOT NULL DEFAULT '{}',
    duration TEXT NOT NULL,
    schedule TEXT,
    notes TEXT,

    status offer_status NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    CONSTRAINT prevent_self_offer CHECK (sender_id <> receiver_id)
);

-- At most one accepted offer per conversation
CREATE UNIQUE INDEX one_accepted_offer_per_conversation
    ON swap_offers (conversation_id) WHERE status = 'accepted';
"""

# Owned by the listings side; the negotiation core only activates or creates rows
swaps_sql = """
CREATE TABLE swaps (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    partner_id UUID REFERENCES auth.users(id) ON DELETE SET NULL,
    title TEXT NOT NULL,
    skill_offered TEXT,
    skill_wanted TEXT,
    category TEXT,
    format TEXT,
    duration TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    conversation_id UUID REFERENCES conversations(id) ON DELETE SET NULL,
    origin_offer_id UUID,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

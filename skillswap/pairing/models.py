conversations_sql = """
CREATE TABLE conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

    user1_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    user2_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- Enforce canonical ordering
    CONSTRAINT user1_less_than_user2 CHECK (user1_id < user2_id),

    -- Ensure only one conversation per user pair
    CONSTRAINT unique_conversation_pair UNIQUE (user1_id, user2_id)
);
"""

get_or_create_conversation_sql = """
CREATE OR REPLACE FUNCTION get_or_create_conversation(uid1 UUID, uid2 UUID)
RETURNS UUID
LANGUAGE plpgsql
AS $$
DECLARE
    low UUID := LEAST(uid1, uid2);
    high UUID := GREATEST(uid1, uid2);
    conv_id UUID;
BEGIN
    INSERT INTO conversations (user1_id, user2_id)
    VALUES (low, high)
    ON CONFLICT (user1_id, user2_id) DO NOTHING
    RETURNING id INTO conv_id;

    IF conv_id IS NULL THEN
        SELECT id INTO conv_id FROM conversations
        WHERE user1_id = low AND user2_id = high;
    END IF;

    RETURN conv_id;
END;
$$;
"""

"""Central registry for Redis Lua scripts used by the payment ledger.

Scripts are registered at application startup (SCRIPT LOAD) and executed with
EVALSHA. Each returns a two-element array ``{code, payload}``:

    - 0: Rejected - the stored record is not in the expected state (or the
         reference is already taken on create). The payload is the current
         record JSON, or an empty string when there is nothing to report.

    - 1: Success - the new record was written. The payload is the saved JSON.

    - 2: Missing - the payment key does not exist. The payload is empty.

Amounts are stored as JSON strings, so cjson never rounds a uint256 value.
The scripts only compare status and hash fields and return the raw stored
JSON unchanged.
"""

LEDGER_SCRIPTS = {
    "create_payment": """
        local payment_key = KEYS[1]
        local reference_key = KEYS[2]
        local index_key = KEYS[3]
        local payment_json = ARGV[1]
        local payment_id = ARGV[2]
        local created_ts = tonumber(ARGV[3])

        if redis.call('EXISTS', reference_key) == 1 then
            return {0, ''}
        end
        if redis.call('EXISTS', payment_key) == 1 then
            return {0, ''}
        end

        redis.call('SET', payment_key, payment_json)
        redis.call('SET', reference_key, payment_id)
        redis.call('ZADD', index_key, created_ts, payment_id)
        return {1, payment_json}
    """,
    "compare_and_set_payment": """
        local payment_key = KEYS[1]
        local new_val = ARGV[1]
        local expected_status = ARGV[2]
        local expected_hash = ARGV[3]

        local current_raw = redis.call('GET', payment_key)
        if not current_raw then
            return {2, ''}
        end

        local current = cjson.decode(current_raw)
        local current_hash = current.transaction_hash
        if current_hash == nil or current_hash == cjson.null then
            current_hash = ''
        end
        if current.status ~= expected_status or current_hash ~= expected_hash then
            return {0, current_raw}
        end

        -- A recorded sweep hash is never replaced
        local current_sweep = current.sweep_transaction_hash
        if current_sweep ~= nil and current_sweep ~= cjson.null then
            local new = cjson.decode(new_val)
            if new.sweep_transaction_hash ~= current_sweep then
                return {0, current_raw}
            end
        end

        redis.call('SET', payment_key, new_val)
        return {1, new_val}
    """,
}

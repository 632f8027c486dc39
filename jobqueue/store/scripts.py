"""
Lua scripts for atomic job state transitions.

Every transition that touches more than one key runs as a single script so
that concurrent workers and processes never observe a half-applied move:
- ENQUEUE: create a job unless its id already exists (deduplication)
- PROMOTE_DELAYED: move delayed jobs whose run_at passed to waiting
- CLAIM: promote due delayed jobs, then pop the best waiting job into active
- EXTEND_LOCK: push back the visibility deadline of an owned active job
- COMPLETE / FAIL: finish an owned active job (retry, fail, retention trim)
- RECOVER_STALLED: return active jobs past their deadline to waiting
- RETRY_FAILED / REMOVE / CLEAN: admin operations
- ADVANCE_SCHEDULE: compare-and-advance a scheduler entry's next run

Numbers that do not fit Lua's number formatting (scores, timestamps) are
computed in Python and passed through as strings.
"""

from typing import Any

from redis.asyncio import Redis

# Shared retention trim: removes jobs finished before ``cutoff`` (exclusive)
# and keeps at most ``keep`` of the newest. "-1" disables either bound.
_TRIM = """
local function trim(setKey, keep, cutoff, prefix)
  if cutoff ~= "-1" then
    local old = redis.call("ZRANGEBYSCORE", setKey, "-inf", "(" .. cutoff)
    for _, id in ipairs(old) do
      redis.call("ZREM", setKey, id)
      redis.call("DEL", prefix .. id)
    end
  end
  local keepCount = tonumber(keep)
  if keepCount >= 0 then
    local total = redis.call("ZCARD", setKey)
    if total > keepCount then
      local extra = redis.call("ZRANGE", setKey, 0, total - keepCount - 1)
      for _, id in ipairs(extra) do
        redis.call("ZREM", setKey, id)
        redis.call("DEL", prefix .. id)
      end
    end
  end
end
"""

# KEYS: job, wait, delayed
# ARGV: id, target ("wait" | "delayed"), score, field1, value1, ...
ENQUEUE = """
if redis.call("EXISTS", KEYS[1]) == 1 then
  return 0
end
for i = 4, #ARGV, 2 do
  redis.call("HSET", KEYS[1], ARGV[i], ARGV[i + 1])
end
if ARGV[2] == "delayed" then
  redis.call("ZADD", KEYS[3], ARGV[3], ARGV[1])
else
  redis.call("ZADD", KEYS[2], ARGV[3], ARGV[1])
end
return 1
"""

# Shared promotion: moves delayed jobs whose run_at passed to the wait set.
_PROMOTE = """
local function promote(waitKey, delayedKey, now, prefix, limit)
  local due = redis.call("ZRANGEBYSCORE", delayedKey, "-inf", now, "LIMIT", 0, limit)
  for _, id in ipairs(due) do
    local jobKey = prefix .. id
    redis.call("ZREM", delayedKey, id)
    local score = redis.call("HGET", jobKey, "wait_score")
    if score then
      redis.call("ZADD", waitKey, score, id)
      redis.call("HSET", jobKey, "status", "waiting")
    end
  end
  return #due
end
"""

# KEYS: wait, delayed
# ARGV: now, job key prefix, limit
PROMOTE_DELAYED = _PROMOTE + """
return promote(KEYS[1], KEYS[2], ARGV[1], ARGV[2], tonumber(ARGV[3]))
"""

# KEYS: wait, delayed, active, paused
# ARGV: now, lock deadline, lock token, job key prefix, promote limit
CLAIM = _PROMOTE + """
promote(KEYS[1], KEYS[2], ARGV[1], ARGV[4], tonumber(ARGV[5]))
if redis.call("EXISTS", KEYS[4]) == 1 then
  return false
end
while true do
  local head = redis.call("ZRANGE", KEYS[1], 0, 0)
  if #head == 0 then
    return false
  end
  local id = head[1]
  redis.call("ZREM", KEYS[1], id)
  local jobKey = ARGV[4] .. id
  if redis.call("EXISTS", jobKey) == 1 then
    redis.call("ZADD", KEYS[3], ARGV[2], id)
    redis.call("HSET", jobKey, "status", "active", "processed_at", ARGV[1], "lock_token", ARGV[3])
    return id
  end
end
"""

# KEYS: job, active
# ARGV: id, lock token, new deadline
EXTEND_LOCK = """
if redis.call("HGET", KEYS[1], "lock_token") == ARGV[2] and redis.call("ZSCORE", KEYS[2], ARGV[1]) then
  redis.call("ZADD", KEYS[2], ARGV[3], ARGV[1])
  return 1
end
return 0
"""

# KEYS: job, active, completed
# ARGV: id, lock token, now, return value, keep count, cutoff, job key prefix
COMPLETE = _TRIM + """
if redis.call("EXISTS", KEYS[1]) == 0 then
  return -1
end
if redis.call("HGET", KEYS[1], "lock_token") ~= ARGV[2] or not redis.call("ZSCORE", KEYS[2], ARGV[1]) then
  return -2
end
redis.call("ZREM", KEYS[2], ARGV[1])
local attempts = redis.call("HINCRBY", KEYS[1], "attempts_made", 1)
redis.call("HSET", KEYS[1], "status", "completed", "finished_at", ARGV[3], "progress", "100")
if ARGV[4] ~= "" then
  redis.call("HSET", KEYS[1], "return_value", ARGV[4])
end
redis.call("HDEL", KEYS[1], "lock_token")
redis.call("ZADD", KEYS[3], ARGV[3], ARGV[1])
trim(KEYS[3], ARGV[5], ARGV[6], ARGV[7])
return attempts
"""

# KEYS: job, active, delayed, failed
# ARGV: id, lock token, now, reason, retry run_at, terminal flag, keep count, cutoff, job key prefix
FAIL = _TRIM + """
if redis.call("EXISTS", KEYS[1]) == 0 then
  return {-1, 0}
end
if redis.call("HGET", KEYS[1], "lock_token") ~= ARGV[2] or not redis.call("ZSCORE", KEYS[2], ARGV[1]) then
  return {-2, 0}
end
redis.call("ZREM", KEYS[2], ARGV[1])
local attempts = redis.call("HINCRBY", KEYS[1], "attempts_made", 1)
local maxAttempts = tonumber(redis.call("HGET", KEYS[1], "max_attempts"))
if ARGV[6] == "1" and attempts < maxAttempts then
  redis.call("HSET", KEYS[1], "attempts_made", maxAttempts)
  attempts = maxAttempts
end
redis.call("HDEL", KEYS[1], "lock_token")
if attempts < maxAttempts then
  redis.call("HSET", KEYS[1], "status", "delayed", "run_at", ARGV[5], "failed_reason", ARGV[4])
  redis.call("ZADD", KEYS[3], ARGV[5], ARGV[1])
  return {1, attempts}
end
redis.call("HSET", KEYS[1], "status", "failed", "finished_at", ARGV[3], "failed_reason", ARGV[4])
redis.call("ZADD", KEYS[4], ARGV[3], ARGV[1])
trim(KEYS[4], ARGV[7], ARGV[8], ARGV[9])
return {0, attempts}
"""

# KEYS: active, wait
# ARGV: now, job key prefix, limit
RECOVER_STALLED = """
local ids = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1], "LIMIT", 0, tonumber(ARGV[3]))
local recovered = {}
for _, id in ipairs(ids) do
  redis.call("ZREM", KEYS[1], id)
  local jobKey = ARGV[2] .. id
  local score = redis.call("HGET", jobKey, "wait_score")
  if score then
    redis.call("HSET", jobKey, "status", "waiting")
    redis.call("HDEL", jobKey, "lock_token")
    redis.call("HINCRBY", jobKey, "stalled_count", 1)
    redis.call("ZADD", KEYS[2], score, id)
    table.insert(recovered, id)
  end
end
return recovered
"""

# KEYS: failed, wait
# ARGV: job key prefix
RETRY_FAILED = """
local ids = redis.call("ZRANGE", KEYS[1], 0, -1)
local count = 0
for _, id in ipairs(ids) do
  redis.call("ZREM", KEYS[1], id)
  local jobKey = ARGV[1] .. id
  local score = redis.call("HGET", jobKey, "wait_score")
  if score then
    redis.call("HSET", jobKey, "status", "waiting", "attempts_made", "0", "progress", "0")
    redis.call("HDEL", jobKey, "finished_at", "processed_at", "failed_reason", "run_at")
    redis.call("ZADD", KEYS[2], score, id)
    count = count + 1
  end
end
return count
"""

# KEYS: job, wait, delayed, active, completed, failed
# ARGV: id
REMOVE = """
if redis.call("EXISTS", KEYS[1]) == 0 then
  return 0
end
for i = 2, 6 do
  redis.call("ZREM", KEYS[i], ARGV[1])
end
redis.call("DEL", KEYS[1])
return 1
"""

# KEYS: terminal set
# ARGV: cutoff (exclusive), limit, job key prefix
CLEAN = """
local ids = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", "(" .. ARGV[1], "LIMIT", 0, tonumber(ARGV[2]))
for _, id in ipairs(ids) do
  redis.call("ZREM", KEYS[1], id)
  redis.call("DEL", ARGV[3] .. id)
end
return #ids
"""

# KEYS: repeat set, entry hash
# ARGV: name, expected next run, following next run
ADVANCE_SCHEDULE = """
local current = redis.call("ZSCORE", KEYS[1], ARGV[1])
if not current or tonumber(current) ~= tonumber(ARGV[2]) then
  return 0
end
local count = redis.call("HINCRBY", KEYS[2], "count", 1)
local limit = tonumber(redis.call("HGET", KEYS[2], "limit") or "0")
if limit > 0 and count >= limit then
  redis.call("ZREM", KEYS[1], ARGV[1])
  redis.call("DEL", KEYS[2])
else
  redis.call("ZADD", KEYS[1], ARGV[3], ARGV[1])
  redis.call("HSET", KEYS[2], "next_run_at", ARGV[3])
end
return count
"""


class QueueScripts:
    """Lua scripts registered on a client; loaded lazily via EVALSHA."""

    def __init__(self, client: Redis):
        self.enqueue = client.register_script(ENQUEUE)
        self.promote_delayed = client.register_script(PROMOTE_DELAYED)
        self.claim = client.register_script(CLAIM)
        self.extend_lock = client.register_script(EXTEND_LOCK)
        self.complete = client.register_script(COMPLETE)
        self.fail = client.register_script(FAIL)
        self.recover_stalled = client.register_script(RECOVER_STALLED)
        self.retry_failed = client.register_script(RETRY_FAILED)
        self.remove = client.register_script(REMOVE)
        self.clean = client.register_script(CLEAN)
        self.advance_schedule = client.register_script(ADVANCE_SCHEDULE)


def flatten_fields(fields: dict[str, Any]) -> list[str]:
    """Flatten a mapping into alternating field/value script arguments."""
    args: list[str] = []
    for key, value in fields.items():
        args.extend((key, str(value)))
    return args

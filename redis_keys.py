REDIS_ROOM_KEY = "room:meta:{room_id}" # room id - hash of room fields
REDIS_ROOMS_INDEX = "rooms:index" # sorted set of room ids scored by creation time
REDIS_USER_KEY = "user:{user_id}" # user id - hash of user fields
REDIS_USERNAME_KEY = "user:name:{username}" # lowercased username -> user id

# **Example `room:meta:{id}` hash fields**
# - `id` = `{roomId}`
# - `name` = display name of the room
# - `created_by` = user id of the creator
# - `members` = json list of user ids
# - `created_at` = ISO timestamp

# **Example `user:{id}` hash fields**
# - `id` = `{userId}`
# - `username` = as registered
# - `password_hash` = bcrypt hash
# - `created_at` = ISO timestamp

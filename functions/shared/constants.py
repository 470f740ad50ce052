# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


KNOWN_CATEGORIES = [
    "Garbage",
    "Water Leak",
    "Roads",
    "Streetlight",
    "Pollution",
    "Other",
]
DEFAULT_CATEGORY = "Other"

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000
MAX_ADMIN_NOTES_LENGTH = 5000
MAX_SEARCH_QUERY_LENGTH = 200

DEFAULT_NEARBY_RADIUS_KM = 5.0
LEADERBOARD_SIZE = 50

POINTS_PER_REPORT = 10
PHOTO_BONUS_POINTS = 5
RESOLUTION_BONUS_POINTS = 5

# Expo only accepts tokens issued by its own push service.
EXPO_TOKEN_PREFIX = "ExponentPushToken"

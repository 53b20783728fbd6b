"""Cloud Functions entry point."""

import logging

from common import firebase_init
from functions import story_fns, story_image_fns

# Configure basic logging for the application (primarily for emulator visibility)
logging.basicConfig(level=logging.INFO)

app = firebase_init.app

# Export the story text functions
generate_full_story = story_fns.generate_full_story
generate_story_titles = story_fns.generate_story_titles
generate_story_pages_text = story_fns.generate_story_pages_text
generate_story_image_prompt = story_fns.generate_story_image_prompt

# Export the story image functions
generate_image_prompt_and_image = story_image_fns.generate_image_prompt_and_image
generate_story_page_image = story_image_fns.generate_story_page_image
generate_kid_avatar_image = story_image_fns.generate_kid_avatar_image
generate_story_cover_image = story_image_fns.generate_story_cover_image

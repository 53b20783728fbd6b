"""Full story generation pipeline.

Runs every stage of a story for one kid, persisting a progress checkpoint
after each transition so clients can poll the story document:

  titles -> page text -> page array -> image prompts -> page images

Per-page failures in the prompt and image stages are recorded and skipped,
so a story is always left `completed` once its text exists.
"""

from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

from common import (errors, image_refinement, models, response_parser,
                    story_operations)
from firebase_functions import logger

_NO_PHOTO_MESSAGE = (
  "Story generated successfully, but images cannot be generated without a "
  "kid photo")


@dataclass(kw_only=True)
class _PipelineRun:
  """Mutable state of one pipeline invocation."""
  story_id: str
  user_id: str
  kid: models.Kid
  percent: int = 0
  notified: bool = False

  @property
  def log_data(self) -> dict[str, Any]:
    return {
      "story_id": self.story_id,
      "user_id": self.user_id,
      "kid_id": self.kid.key,
    }


class StoryPipeline:
  """Generates a complete illustrated story for a kid."""

  def __init__(
    self,
    store: Any,
    text_client: Any,
    image_gen_client: Any,
    storage: Any,
    notifier: Any,
    rng: random.Random | None = None,
    sleep_fn: Callable[[float], Any] = time.sleep,
    use_refinement: bool = False,
  ):
    """Create a pipeline.

    Args:
        store: Story and kid document store.
        text_client: Text generation client.
        image_gen_client: Image generation client.
        storage: Image storage.
        notifier: Story-ready notifier.
        rng: Random source used to pick the title.
        sleep_fn: Sleep function used between retries, in seconds.
        use_refinement: Generate page images with prompt refinement and
          notify as soon as the last page completes, instead of the plain
          retrying loop.
    """
    self.store = store
    self.text_client = text_client
    self.image_gen_client = image_gen_client
    self.storage = storage
    self.notifier = notifier
    self.rng = rng or random.Random()
    self.sleep_fn = sleep_fn
    self.use_refinement = use_refinement

  def generate_full_story(
    self,
    user_id: str,
    kid_id: str,
    problem_description: str,
    advantages: str | None = None,
    disadvantages: str | None = None,
  ) -> models.FullStoryResult:
    """Run the whole pipeline.

    Raises:
        StoryError: NOT_FOUND if the kid does not exist.
        ResponseParseError: If titles or pages could not be parsed.
    """
    kid = self.store.get_kid(kid_id)
    if kid is None:
      raise errors.not_found(f"Kid not found: {kid_id}")

    progress = models.StoryProgress(models.StoryStage.INITIALIZING, 5)
    story_id = self.store.create_story(user_id, kid_id, user_id, progress)
    run = _PipelineRun(story_id=story_id,
                       user_id=user_id,
                       kid=kid,
                       percent=progress.percent)
    logger.info(f"Generating full story {story_id} for kid {kid_id}",
                extra={"json_fields": run.log_data})

    try:
      self.store.increment_stories_created(kid_id)
    except Exception as e:  # pylint: disable=broad-except
      logger.warn(f"Could not increment stories_created for kid {kid_id}: {e}",
                  extra={"json_fields": run.log_data})

    title = self._choose_title(run, problem_description, advantages,
                               disadvantages)
    pages = self._generate_pages(run, title, problem_description, advantages,
                                 disadvantages)

    if not self.use_refinement:
      self._generate_missing_prompts(run, pages)
    else:
      # Prompts are generated per page by the refinement loop.
      self._set_progress(run, models.StoryStage.PROMPTS_GENERATED, 70)

    if not kid.image_url:
      logger.warn(f"Kid {kid_id} has no photo, skipping page images",
                  extra={"json_fields": run.log_data})
      self._set_progress(run, models.StoryStage.COMPLETED, 100)
      return models.FullStoryResult(story_id=story_id,
                                    title=title,
                                    pages_count=len(pages),
                                    message=_NO_PHOTO_MESSAGE,
                                    images_skipped=True)

    image_results = self._generate_images(run, pages)
    result = models.FullStoryResult(story_id=story_id,
                                    title=title,
                                    pages_count=len(pages),
                                    image_results=image_results)
    result.message = (f"Story generated successfully with "
                      f"{result.images_generated}/{len(pages)} images")

    self._set_progress(run, models.StoryStage.COMPLETED, 100)

    if result.all_images_generated:
      if not run.notified:
        run.notified = self.notifier.notify_story_ready(
          user_id, story_id, title, kid.name)
    else:
      logger.warn(
        f"Only {result.images_generated}/{len(pages)} images generated for "
        f"story {story_id}, not sending email",
        extra={"json_fields": run.log_data})

    logger.info(result.message, extra={"json_fields": run.log_data})
    return result

  def _choose_title(
    self,
    run: _PipelineRun,
    problem_description: str,
    advantages: str | None,
    disadvantages: str | None,
  ) -> str:
    self._set_progress(run, models.StoryStage.TITLES_GENERATED, 10)
    titles = story_operations.generate_story_titles(
      self.text_client,
      name=run.kid.name,
      gender=run.kid.gender,
      problem_description=problem_description,
      age=run.kid.age,
      advantages=advantages,
      disadvantages=disadvantages,
      extra_log_data=run.log_data,
    )
    title = self.rng.choice(titles)
    logger.info(f"Chose title '{title}' from {len(titles)} candidates",
                extra={"json_fields": run.log_data})
    self._set_progress(run, models.StoryStage.TITLES_GENERATED, 20, {
      'title': title,
      'problemDescription': problem_description,
      'advantages': advantages or "",
      'disadvantages': disadvantages or "",
    })
    return title

  def _generate_pages(
    self,
    run: _PipelineRun,
    title: str,
    problem_description: str,
    advantages: str | None,
    disadvantages: str | None,
  ) -> list[models.StoryPage]:
    text = story_operations.generate_story_pages_text(
      self.text_client,
      name=run.kid.name,
      problem_description=problem_description,
      title=title,
      age=run.kid.age,
      advantages=advantages,
      disadvantages=disadvantages,
      extra_log_data=run.log_data,
    )
    self._set_progress(run, models.StoryStage.PAGES_GENERATED, 40)

    pages = models.pages_from_list(response_parser.parse_pages(text))
    for page in pages:
      page.selected_image_url = ""
      page.image_prompt = response_parser.repair_image_prompt(
        page.image_prompt, page.page_num)
    logger.info(f"Parsed {len(pages)} pages for story {run.story_id}",
                extra={"json_fields": run.log_data})
    self._set_progress(run, models.StoryStage.PAGES_GENERATED, 50)

    self.store.save_pages(run.story_id, pages)
    self._set_progress(run, models.StoryStage.PAGES_GENERATED, 60)
    return pages

  def _generate_missing_prompts(self, run: _PipelineRun,
                                pages: list[models.StoryPage]) -> None:
    """Generate an image prompt for every page that lacks one.

    A failed page is logged and left without a prompt.
    """
    needing = [p for p in pages if not p.has_image_prompt]
    if not needing:
      self._set_progress(run, models.StoryStage.PROMPTS_GENERATED, 70)
      return

    generated = 0
    for done, page in enumerate(needing, start=1):
      try:
        page.image_prompt = image_refinement.generate_image_prompt(
          self.text_client,
          page.story_text,
          run.kid.gender,
          run.kid.age,
          extra_log_data={
            **run.log_data, "page_num": page.page_num
          },
        )
        generated += 1
      except Exception as e:  # pylint: disable=broad-except
        logger.error(
          f"Failed to generate image prompt for page {page.page_num}: {e}",
          extra={"json_fields": {
            **run.log_data, "page_num": page.page_num
          }})
      self._set_progress(run, models.StoryStage.PROMPTS_GENERATED,
                         60 + math.floor(done / len(needing) * 10))

    logger.info(f"Generated {generated}/{len(needing)} image prompts",
                extra={"json_fields": run.log_data})
    self.store.save_pages(run.story_id, pages)

  def _generate_images(
    self,
    run: _PipelineRun,
    pages: list[models.StoryPage],
  ) -> list[models.ImageResult]:
    """Generate page images one at a time, recording each page's outcome."""
    results = []
    for i, page in enumerate(pages):
      page_log_data = {**run.log_data, "page_num": i}
      if not self.use_refinement and not page.has_image_prompt:
        logger.warn(f"Page {i} has no image prompt, skipping image",
                    extra={"json_fields": page_log_data})
        results.append(
          models.ImageResult(page_num=i, success=False,
                             error="No image prompt"))
      else:
        try:
          image_url = self._generate_page_image(run, page, page_log_data)
          results.append(
            models.ImageResult(page_num=i, success=True, image_url=image_url))
        except Exception as e:  # pylint: disable=broad-except
          logger.error(f"Failed to generate image for page {i}: {e}",
                       extra={"json_fields": page_log_data})
          results.append(
            models.ImageResult(page_num=i, success=False, error=str(e)))

      self._set_progress(run, models.StoryStage.IMAGES_IN_PROGRESS,
                         70 + math.floor((i + 1) / len(pages) * 25))
    return results

  def _generate_page_image(
    self,
    run: _PipelineRun,
    page: models.StoryPage,
    log_data: dict[str, Any],
  ) -> str:
    """Generate, store and persist one page's image.

    Returns:
        The stored image URL.
    """
    if self.use_refinement:
      loop = image_refinement.PromptRefinementLoop(self.text_client,
                                                   self.image_gen_client,
                                                   sleep_fn=self.sleep_fn)
      refined = loop.run(page.story_text,
                         run.kid.image_url,
                         gender=run.kid.gender,
                         age=run.kid.age,
                         extra_log_data=log_data)
      base64_image = refined.base64_image
      page.image_prompt = refined.image_prompt
    else:
      base64_image = image_refinement.generate_page_image_with_retry(
        self.image_gen_client,
        page.image_prompt,
        run.kid.image_url,
        sleep_fn=self.sleep_fn,
        extra_log_data=log_data,
      )

    image_url = self.storage.save_image(base64_image, run.user_id,
                                        run.user_id, run.story_id, 'page',
                                        page.page_num)
    fields = {'selectedImageUrl': image_url}
    if self.use_refinement:
      fields['imagePrompt'] = page.image_prompt
    story = self.store.update_page(run.story_id, page.page_num, fields)
    page.selected_image_url = image_url

    if self.use_refinement and not run.notified:
      run.notified = story_operations.notify_if_story_complete(
        self.store, self.notifier, story, run.user_id)
    return image_url

  def _set_progress(
    self,
    run: _PipelineRun,
    stage: models.StoryStage,
    percent: int,
    extra_data: dict[str, Any] | None = None,
  ) -> None:
    """Persist a progress checkpoint. Never moves progress backwards.

    Write failures are logged and ignored.
    """
    if percent < run.percent:
      logger.warn(f"Ignoring progress {percent} below {run.percent}",
                  extra={"json_fields": run.log_data})
      return
    run.percent = percent
    try:
      self.store.update_progress(run.story_id,
                                 models.StoryProgress(stage, percent),
                                 extra_data)
    except Exception as e:  # pylint: disable=broad-except
      logger.error(f"Failed to update story progress to {percent}: {e}",
                   extra={"json_fields": run.log_data})

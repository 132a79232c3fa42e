"""
Gemini conversation extractor

Scrolls a Gemini conversation page until the whole history is loaded, reads
every turn through Playwright element handles and builds the exported
transcript together with the list of media files to download.
"""
import asyncio
from typing import Any, Dict, List, Optional, Tuple

from core.config import config
from core.exceptions import ExtractionError
from data.models import ChatMessage, DownloadRequest, ExtractionResult, MediaFile, Transcript
from utils.helpers import filename_from_url, remove_citations
from utils.logger import setup_logger

SELECTORS = {
    'chat_container': '[data-test-id="chat-history-container"]',
    'conversation_turn': 'div.conversation-container',
    'user_query': 'user-query',
    'user_query_text': '.query-text',
    'model_response': 'model-response',
    'conversation_title': '.conversation-title',
    'file_preview_container': '.file-preview-container',
    'file_preview': 'user-query-file-preview',
    'image_preview': 'img[data-test-id="uploaded-img"]',
    'video_preview_button': 'button[data-test-id="video-preview-button"]',
    'video_player': 'video[data-test-id="video-player"]',
    'dialog_close': 'button[mat-dialog-close]',
    'action_card': 'action-card',
    'model_thoughts': 'model-thoughts',
    'thoughts_header_button': 'button[data-test-id="thoughts-header-button"]',
    'thoughts_content': 'div[data-test-id="thoughts-content"]',
    'generated_image': 'generated-image img.image',
    'response_text': '.markdown',
}

VIDEO_LOAD_TIMEOUT = 5.0
LIGHTBOX_CLOSE_DELAY = 0.3


def build_result(conversation_id: str, title: str, turns: List[Dict[str, Any]]) -> ExtractionResult:
    """
    Turn raw per-turn page data into a transcript and download list

    Each raw turn may carry 'user' ({'text', 'files'}) and 'assistant'
    ({'text', 'thoughts', 'generated_images', 'action_card'}) entries.
    Message indices count exported messages, starting at 0.
    """
    messages: List[ChatMessage] = []
    downloads: List[DownloadRequest] = []

    for turn in turns:
        user = turn.get('user')
        if user is not None:
            index = len(messages)
            files = [MediaFile(**f) for f in user.get('files') or []]
            video_index = image_index = 0
            for media in files:
                if media.type == 'video':
                    downloads.append(DownloadRequest(
                        kind='video', url=media.url, conversationId=conversation_id,
                        messageIndex=index, fileIndex=video_index, filename=media.filename
                    ))
                    video_index += 1
                else:
                    downloads.append(DownloadRequest(
                        kind='image', url=media.url, conversationId=conversation_id,
                        messageIndex=index, fileIndex=image_index, filename=filename_from_url(media.url)
                    ))
                    image_index += 1
            messages.append(ChatMessage(role='user', content=(user.get('text') or '').strip(), files=files or None))

        assistant = turn.get('assistant')
        if assistant is None or assistant.get('action_card'):
            continue

        index = len(messages)
        generated = [url for url in assistant.get('generated_images') or [] if url]
        text = assistant.get('text') or ''
        if generated:
            for image_index, url in enumerate(generated):
                downloads.append(DownloadRequest(
                    kind='image', url=url, conversationId=conversation_id,
                    messageIndex=index, fileIndex=image_index, isGenerated=True
                ))
            messages.append(ChatMessage(
                role='assistant',
                content=text.strip(),
                files=[MediaFile(type='image', url=url) for url in generated]
            ))
        elif text.strip():
            messages.append(ChatMessage(
                role='assistant',
                content=remove_citations(text),
                model_thoughts=assistant.get('thoughts') or None
            ))

    return ExtractionResult(transcript=Transcript.from_messages(title, messages), downloads=downloads)


class GeminiTranscriptExtractor:
    """Reads a loaded Gemini conversation page"""

    def __init__(
        self,
        scroll_delay: Optional[float] = None,
        max_scroll_attempts: Optional[int] = None,
        max_stable_scrolls: Optional[int] = None,
    ):
        self.logger = setup_logger("chat_exporter_extractor", config.log_level, config.log_file)
        self.scroll_delay = config.get('extraction.scroll_delay', 2.0) if scroll_delay is None else scroll_delay
        self.max_scroll_attempts = max_scroll_attempts or config.get('extraction.max_scroll_attempts', 60)
        self.max_stable_scrolls = max_stable_scrolls or config.get('extraction.max_stable_scrolls', 4)
        self.mouseover_delay = config.get('extraction.mouseover_delay', 0.5)
        self.thoughts_expand_delay = config.get('extraction.thoughts_expand_delay', 0.3)
        self.container_timeout = config.get('extraction.container_timeout', 30)

    async def extract(self, page, conversation_id: str) -> ExtractionResult:
        """
        Extract a full conversation from a worker page

        Raises:
            ExtractionError: the page is not a Gemini conversation
        """
        try:
            await page.wait_for_selector(SELECTORS['chat_container'], timeout=self.container_timeout * 1000)
        except Exception as e:
            raise ExtractionError(
                f"Could not find chat history container. Is {conversation_id} a Gemini chat? ({e})",
                job_id=conversation_id
            )

        await self.scroll_to_load_all(page)

        title = await self.get_title(page)
        turns = await page.query_selector_all(SELECTORS['conversation_turn'])
        self.logger.info(f"Reading {len(turns)} turns of '{title}'")

        raw_turns = []
        for i, turn in enumerate(turns):
            try:
                raw_turns.append(await self._read_turn(page, turn))
            except Exception as e:
                self.logger.warning(f"Skipping turn {i + 1} of {conversation_id}: {e}")

        return build_result(conversation_id, title, raw_turns)

    async def scroll_to_load_all(self, page) -> int:
        """Scroll the history to the top until the turn count and offset stop changing"""
        stable_scrolls = 0
        attempts = 0
        last_scroll_top = None

        while stable_scrolls < self.max_stable_scrolls and attempts < self.max_scroll_attempts:
            before = await self._turn_count(page)
            await page.eval_on_selector(SELECTORS['chat_container'], 'el => { el.scrollTop = 0; }')
            await asyncio.sleep(self.scroll_delay)

            scroll_top = await page.eval_on_selector(SELECTORS['chat_container'], 'el => el.scrollTop')
            after = await self._turn_count(page)

            if after == before and (scroll_top == last_scroll_top or scroll_top == 0):
                stable_scrolls += 1
            else:
                stable_scrolls = 0

            last_scroll_top = scroll_top
            attempts += 1

        self.logger.debug(f"History loaded after {attempts} scroll(s)")
        return attempts

    async def get_title(self, page) -> str:
        element = await page.query_selector(SELECTORS['conversation_title'])
        if element is None:
            return 'Untitled Conversation'
        title = (await element.text_content() or '').strip()
        return title or 'Untitled Conversation'

    async def _turn_count(self, page) -> int:
        return len(await page.query_selector_all(SELECTORS['conversation_turn']))

    async def _read_turn(self, page, turn) -> Dict[str, Any]:
        raw: Dict[str, Any] = {}

        user_query = await turn.query_selector(SELECTORS['user_query'])
        if user_query is not None:
            text_element = await user_query.query_selector(SELECTORS['user_query_text'])
            text = await (text_element or user_query).text_content()
            raw['user'] = {'text': text or '', 'files': await self._read_files(page, user_query)}

        response = await turn.query_selector(SELECTORS['model_response'])
        if response is not None:
            raw['assistant'] = await self._read_response(response)

        return raw

    async def _read_files(self, page, user_query) -> List[Dict[str, Any]]:
        """Attached files in display order; videos need the preview dialog to expose their URL"""
        files: List[Dict[str, Any]] = []
        container = await user_query.query_selector(SELECTORS['file_preview_container'])
        if container is None:
            return files

        for preview in await container.query_selector_all(SELECTORS['file_preview']):
            video_button = await preview.query_selector(SELECTORS['video_preview_button'])
            if video_button is not None:
                url, filename = await self._read_video(page, video_button)
                if url:
                    files.append({'type': 'video', 'url': url, 'filename': filename or 'video.mp4'})
                continue

            image = await preview.query_selector(SELECTORS['image_preview'])
            if image is not None:
                src = await image.get_attribute('src')
                if src:
                    files.append({'type': 'image', 'url': src})

        return files

    async def _read_video(self, page, button) -> Tuple[Optional[str], Optional[str]]:
        try:
            await button.click()
            player = await page.wait_for_selector(SELECTORS['video_player'], timeout=VIDEO_LOAD_TIMEOUT * 1000)
            url = await player.evaluate("v => (v.querySelector('source') || {}).src || v.src || ''")
        except Exception as e:
            self.logger.warning(f"Error extracting video URL: {e}")
            url = ''
        finally:
            await asyncio.sleep(LIGHTBOX_CLOSE_DELAY)
            close = await page.query_selector(SELECTORS['dialog_close'])
            if close is not None:
                await close.click()
                await asyncio.sleep(LIGHTBOX_CLOSE_DELAY)

        return (url or None), (filename_from_url(url) if url else None)

    async def _read_response(self, response) -> Dict[str, Any]:
        if await response.query_selector(SELECTORS['action_card']) is not None:
            return {'action_card': True}

        await response.hover()
        await asyncio.sleep(self.mouseover_delay)

        generated = []
        for image in await response.query_selector_all(SELECTORS['generated_image']):
            src = await image.get_attribute('src')
            if src:
                generated.append(src)

        text_element = await response.query_selector(SELECTORS['response_text'])
        text = await text_element.inner_text() if text_element is not None else ''

        return {
            'text': text,
            'generated_images': generated,
            'thoughts': None if generated else await self._read_thoughts(response),
        }

    async def _read_thoughts(self, response) -> Optional[str]:
        button = await response.query_selector(SELECTORS['thoughts_header_button'])
        if button is None or await response.query_selector(SELECTORS['model_thoughts']) is None:
            return None

        content = await response.query_selector(SELECTORS['thoughts_content'])
        was_expanded = content is not None
        if not was_expanded:
            await button.click()
            await asyncio.sleep(self.thoughts_expand_delay)
            for _ in range(10):
                content = await response.query_selector(SELECTORS['thoughts_content'])
                if content is not None:
                    break
                await asyncio.sleep(0.2)
            if content is None:
                return None

        paragraphs = [(await p.text_content() or '').strip() for p in await content.query_selector_all('p')]
        thoughts = '\n'.join(p for p in paragraphs if p)

        # Leave the thoughts panel as it was
        if not was_expanded:
            await button.click()
            await asyncio.sleep(self.thoughts_expand_delay)

        return thoughts or None

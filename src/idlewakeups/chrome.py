from dataclasses import dataclass
from typing import Optional

CHROME_IMAGE_NAME = 'chrome.exe'

PROCESS_TYPE_PARAM = '--type='
RENDERER_PROCESS_TYPE = 'renderer'
EXTENSION_PROCESS_TYPE = 'extension'
EXTENSION_PARAM = '--extension-process'
UTILITY_PROCESS_TYPE = 'utility'
UTILITY_SUB_TYPE_PARAM = '--utility-sub-type='
BROWSER_PROCESS_TYPE = 'browser'
CRASHPAD_PROCESS_TYPE = 'crashpad-handler'
CRASHPAD_PROCESS_TYPE_SHORT = 'crashpad'


@dataclass(frozen=True)
class ChromeProcessType:
    type: str = ''
    sub_type: Optional[str] = None

    def __str__(self) -> str:
        if self.sub_type:
            return f"{self.type}/{self.sub_type}"
        return self.type


def chrome_process_type(command_line: Optional[str]) -> ChromeProcessType:
    """
    Classify a chrome.exe process from its command line.

    No --type= switch means the browser process. Renderers hosting extensions
    are reported as 'extension' and utility processes carry the last component
    of their service name as sub type, e.g. 'VideoCaptureService' for
    --utility-sub-type=video_capture.mojom.VideoCaptureService.
    """
    if not command_line:
        return ChromeProcessType()

    process_type = BROWSER_PROCESS_TYPE
    sub_type = None
    args = command_line.split()
    for arg in args:
        if not arg.startswith(PROCESS_TYPE_PARAM):
            continue
        process_type = arg[len(PROCESS_TYPE_PARAM):]
        if process_type == CRASHPAD_PROCESS_TYPE:
            process_type = CRASHPAD_PROCESS_TYPE_SHORT
        elif process_type == RENDERER_PROCESS_TYPE and EXTENSION_PARAM in command_line:
            process_type = EXTENSION_PROCESS_TYPE
        elif process_type == UTILITY_PROCESS_TYPE:
            utility_sub_type = next(
                (a for a in args if a.startswith(UTILITY_SUB_TYPE_PARAM)), None)
            if utility_sub_type is not None:
                sub_type = utility_sub_type[len(UTILITY_SUB_TYPE_PARAM):].split('.')[-1]
        break
    return ChromeProcessType(type=process_type, sub_type=sub_type)

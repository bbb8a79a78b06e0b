"""
Tasks Module

Long-running, cancellable operations tracked as background tasks.

Architecture:
- BackgroundOperationRunner: Runs one BackgroundOperation as an observable task
- TaskList: Tasks with change listeners
- consume_sse_stream / consume_output_stream: Progress streaming over SSE
- make_project_update_operation / make_container_update_operation: Update operations
"""

from tasks.background import BackgroundTask, TaskList, TaskStatus
from tasks.project_update import (
    UpdateContainerArgs,
    UpdateProjectArgs,
    make_container_update_operation,
    make_project_update_operation,
)
from tasks.runner import BackgroundOperation, BackgroundOperationRunner, CancellationToken, OperationCallbacks
from tasks.sse import OperationError, SSELineDecoder, consume_output_stream, consume_sse_stream

__all__ = [
    'BackgroundTask',
    'TaskList',
    'TaskStatus',
    'UpdateContainerArgs',
    'UpdateProjectArgs',
    'make_container_update_operation',
    'make_project_update_operation',
    'BackgroundOperation',
    'BackgroundOperationRunner',
    'CancellationToken',
    'OperationCallbacks',
    'OperationError',
    'SSELineDecoder',
    'consume_output_stream',
    'consume_sse_stream',
]

from __future__ import annotations

from django.http import StreamingHttpResponse

from .options import DumpOptions
from .targets import DatabaseTarget


def dump_response(
    target: DatabaseTarget,
    options: DumpOptions | None = None,
    *,
    archive: bool = True,
    filename: str | None = None,
) -> StreamingHttpResponse:
    """Stream a dump of ``target`` as a file download.

    The dump is produced while the response is sent. When the server closes
    the response early (client disconnect), ``pg_dump`` is terminated. A
    failure after the headers went out cannot change the status code; the
    download is cut short instead.
    """
    client = target.client()
    if archive:
        stream = client.dump_zip(target.capability, target.uri, options)
        content_type = "application/zip"
        default_name = f"{target.alias}.zip"
    else:
        stream = client.dump(target.capability, target.uri, options)
        content_type = "application/sql"
        default_name = f"{target.alias}.sql"

    response = StreamingHttpResponse(stream.iter_chunks(client.chunk_size), content_type=content_type)
    response["Content-Disposition"] = f'attachment; filename="{filename or default_name}"'
    return response

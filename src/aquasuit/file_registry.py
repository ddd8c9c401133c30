"""Absolute output paths for one model run."""
import os.path


class FileRegistry:
    """Map output ids to absolute paths in a workspace.

    Each output's ``path`` is joined to the workspace and the results suffix
    is inserted before its extension, so with suffix ``'_v2'`` the output
    ``suitability.tif`` resolves to ``<workspace>/suitability_v2.tif``.

    Looking up a path records it in ``registry``, which the model returns
    from ``execute`` as the list of files it wrote.
    """

    def __init__(self, outputs, workspace_dir, file_suffix=None):
        """Resolve the path of each output.

        Args:
            outputs (list): ``spec.FileOutput`` objects.
            workspace_dir (str): directory the output paths are relative to.
            file_suffix (str): inserted before each extension, if given.

        Raises:
            ValueError if two outputs share an id or resolve to one path.
        """
        self.registry = {}
        self._paths = {}
        suffix = file_suffix or ''
        for output in outputs:
            if output.id in self._paths:
                raise ValueError(f'Duplicate id: {output.id}')
            stem, extension = os.path.splitext(output.path)
            path = os.path.abspath(
                os.path.join(workspace_dir, f'{stem}{suffix}{extension}'))
            if path in self._paths.values():
                raise ValueError(f'Duplicate path: {path}')
            self._paths[output.id] = path

    def __getitem__(self, key):
        """Return the path of output ``key`` and record it in the registry.

        Raises:
            KeyError if ``key`` is not an output id.
        """
        try:
            path = self._paths[key]
        except KeyError:
            raise KeyError(f'Key not found: {key}')
        self.registry[key] = path
        return path

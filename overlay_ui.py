from __future__ import annotations

from typing import Final

from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtGui import QFont, QTextCursor
from PyQt6.QtWidgets import (
    QFrame,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from settings_store import DEFAULT_FONT_SIZE, FONT_SIZES

LANGUAGE_LABELS: Final[dict[str, tuple[str, str]]] = {
    "ja": ("Japanese", "English"),
    "en": ("English", "Japanese"),
}
FONT_POINT_SIZES: Final[dict[str, int]] = {"small": 14, "medium": 18, "large": 24, "xlarge": 30}


class TranslatorWindow(QWidget):
    """Two-pane window (original / translation) acting as the pipeline's display sink."""

    start_requested = pyqtSignal(str)
    stop_requested = pyqtSignal()
    reset_requested = pyqtSignal()
    font_size_changed = pyqtSignal(str)

    def __init__(self, font_size: str = DEFAULT_FONT_SIZE) -> None:
        super().__init__()
        self._listening = False
        self._translating = False
        self._font_size = font_size if font_size in FONT_SIZES else DEFAULT_FONT_SIZE
        self._build_ui()
        self._apply_window_style()
        self.apply_font_size(self._font_size)
        self.set_listening(False)

    @property
    def font_size(self) -> str:
        return self._font_size

    @property
    def translating(self) -> bool:
        return self._translating

    def show_original(self, text: str) -> None:
        self._set_pane_text(self.original_view, text)

    def show_translation(self, text: str) -> None:
        self._set_pane_text(self.translation_view, text)

    def reset_translation(self) -> None:
        self.translation_view.clear()

    def set_translating(self, active: bool) -> None:
        self._translating = active
        self.translating_indicator.setVisible(active)

    def set_status(self, message: str) -> None:
        self.status_label.setText(message)

    def show_error(self, message: str) -> None:
        self.error_label.setText(message)
        self.error_label.setVisible(bool(message))

    def clear(self) -> None:
        self.original_view.clear()
        self.translation_view.clear()
        self.show_error("")

    def set_language(self, language: str) -> None:
        source, target = LANGUAGE_LABELS.get(language, LANGUAGE_LABELS["ja"])
        self.source_label.setText(source)
        self.target_label.setText(target)

    def set_listening(self, listening: bool) -> None:
        self._listening = listening
        self.listening_indicator.setVisible(listening)
        self.start_ja_button.setVisible(not listening)
        self.start_en_button.setVisible(not listening)
        self.stop_button.setVisible(listening)
        self.stop_button.setEnabled(listening)
        self.reset_button.setEnabled(not listening)

    def apply_font_size(self, size: str) -> None:
        if size not in FONT_SIZES:
            return
        self._font_size = size
        font = QFont()
        font.setPointSize(FONT_POINT_SIZES[size])
        self.original_view.setFont(font)
        self.translation_view.setFont(font)

    def _build_ui(self) -> None:
        root = QVBoxLayout(self)
        root.setContentsMargins(6, 6, 6, 6)

        panel = QFrame()
        panel.setObjectName("translatorPanel")
        root.addWidget(panel)

        layout = QVBoxLayout(panel)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(8)

        controls = QHBoxLayout()
        controls.setSpacing(6)
        layout.addLayout(controls)

        self.start_ja_button = QPushButton("Start (Japanese)")
        self.start_ja_button.clicked.connect(lambda: self._on_start_clicked("ja"))
        controls.addWidget(self.start_ja_button)

        self.start_en_button = QPushButton("Start (English)")
        self.start_en_button.clicked.connect(lambda: self._on_start_clicked("en"))
        controls.addWidget(self.start_en_button)

        self.stop_button = QPushButton("Stop")
        self.stop_button.clicked.connect(self._on_stop_clicked)
        controls.addWidget(self.stop_button)

        self.reset_button = QPushButton("Reset")
        self.reset_button.clicked.connect(self.reset_requested.emit)
        controls.addWidget(self.reset_button)

        controls.addStretch(1)
        self.font_buttons: dict[str, QPushButton] = {}
        for size in FONT_SIZES:
            button = QPushButton(size[0].upper() if size != "xlarge" else "XL")
            button.clicked.connect(lambda _checked=False, value=size: self._on_font_clicked(value))
            controls.addWidget(button)
            self.font_buttons[size] = button

        self.source_label = QLabel("Japanese")
        self.source_label.setObjectName("paneLabel")
        self.listening_indicator = QLabel("listening")
        self.listening_indicator.setObjectName("indicator")
        source_row = QHBoxLayout()
        source_row.addWidget(self.source_label)
        source_row.addStretch(1)
        source_row.addWidget(self.listening_indicator)
        layout.addLayout(source_row)

        self.original_view = self._make_pane()
        layout.addWidget(self.original_view)

        self.target_label = QLabel("English")
        self.target_label.setObjectName("paneLabel")
        self.translating_indicator = QLabel("translating")
        self.translating_indicator.setObjectName("indicator")
        self.translating_indicator.setVisible(False)
        target_row = QHBoxLayout()
        target_row.addWidget(self.target_label)
        target_row.addStretch(1)
        target_row.addWidget(self.translating_indicator)
        layout.addLayout(target_row)

        self.translation_view = self._make_pane()
        layout.addWidget(self.translation_view)

        self.error_label = QLabel("")
        self.error_label.setObjectName("errorLabel")
        self.error_label.setWordWrap(True)
        self.error_label.setVisible(False)
        layout.addWidget(self.error_label)

        self.status_label = QLabel("Idle")
        layout.addWidget(self.status_label)

    @staticmethod
    def _make_pane() -> QTextEdit:
        pane = QTextEdit()
        pane.setReadOnly(True)
        pane.setAcceptRichText(False)
        pane.setLineWrapMode(QTextEdit.LineWrapMode.WidgetWidth)
        pane.setVerticalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAsNeeded)
        return pane

    def _apply_window_style(self) -> None:
        self.setWindowTitle("Live Interpreter")
        self.setMinimumSize(640, 420)
        self.resize(980, 620)
        self.setStyleSheet(
            """
            #translatorPanel {
                background-color: rgba(28, 28, 28, 235);
                border-radius: 12px;
            }
            QTextEdit {
                background-color: rgba(43, 43, 43, 255);
                color: white;
                border: none;
                padding: 8px;
            }
            QLabel {
                color: white;
            }
            #indicator {
                color: #2ecc71;
            }
            #errorLabel {
                color: #e74c3c;
            }
            QPushButton {
                background-color: rgba(70, 70, 70, 220);
                color: white;
                border: 1px solid rgba(255, 255, 255, 50);
                border-radius: 8px;
                padding: 6px 9px;
            }
            QPushButton:hover {
                background-color: rgba(88, 88, 88, 220);
            }
            """
        )

    def _on_start_clicked(self, language: str) -> None:
        self.set_language(language)
        self.start_requested.emit(language)

    def _on_stop_clicked(self) -> None:
        self.stop_requested.emit()

    def _on_font_clicked(self, size: str) -> None:
        self.apply_font_size(size)
        self.font_size_changed.emit(size)

    @staticmethod
    def _set_pane_text(pane: QTextEdit, text: str) -> None:
        if pane.toPlainText() == text:
            return
        pane.setPlainText(text)
        cursor = pane.textCursor()
        cursor.movePosition(QTextCursor.MoveOperation.End)
        pane.setTextCursor(cursor)
        pane.ensureCursorVisible()

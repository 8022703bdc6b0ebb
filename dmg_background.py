from PIL import Image, ImageDraw

TOP_COLOR = (250, 250, 252)
BOTTOM_COLOR = (226, 230, 236)
ARROW_COLOR = (160, 166, 176)


def create_background(output_path, width, height, app_position, folder_position, icon_size=160):
    """
    Draw a plain installer background: a soft vertical gradient with an arrow
    pointing from the app icon to the Applications folder.
    """
    image = Image.new('RGB', (width, height), color=TOP_COLOR)
    draw = ImageDraw.Draw(image)

    for y in range(height):
        ratio = y / max(1, height - 1)
        color = tuple(
            round(top + (bottom - top) * ratio)
            for top, bottom in zip(TOP_COLOR, BOTTOM_COLOR)
        )
        draw.line([(0, y), (width, y)], fill=color)

    # Icon positions are the icon centers
    (app_x, app_y), (folder_x, folder_y) = app_position, folder_position
    gap = icon_size // 2 + 20
    start_x = app_x + gap
    end_x = folder_x - gap
    arrow_y = (app_y + folder_y) // 2
    if end_x - start_x > 20:
        head = 14
        draw.line([(start_x, arrow_y), (end_x - head, arrow_y)], fill=ARROW_COLOR, width=6)
        draw.polygon(
            [(end_x, arrow_y), (end_x - head * 2, arrow_y - head), (end_x - head * 2, arrow_y + head)],
            fill=ARROW_COLOR,
        )

    image.save(output_path, 'PNG')
    return output_path
